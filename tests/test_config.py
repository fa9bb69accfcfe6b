"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from commerce_copilot.config import load_config
from commerce_copilot.core.types import ConversationKind, ParticipantRole

EXAMPLE = Path(__file__).resolve().parent.parent / "config.example.yaml"

MINIMAL = """
data_dir: /srv/copilot
anthropic:
  api_key: ${TEST_COPILOT_KEY}
storage:
  db_path: ${data_dir}/copilot.db
profiles:
  - id: storefront
    kind: STOREFRONT
    ai:
      tools: [track_order]
"""


def test_interpolates_env_and_data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("TEST_COPILOT_KEY", "sk-test")
    config_file = tmp_path / "config.yaml"
    config_file.write_text(MINIMAL, encoding="utf-8")

    config = load_config(config_file, env_path=tmp_path / ".env")

    assert config.anthropic.api_key == "sk-test"
    assert config.storage.db_path == "/srv/copilot/copilot.db"
    assert config.turn.history_limit == 40
    assert config.get_profile("storefront").ai.tools == ["track_order"]
    assert config.get_profile("admin") is None


def test_reads_dotenv(tmp_path, monkeypatch):
    monkeypatch.setenv("TEST_COPILOT_KEY", "placeholder")
    monkeypatch.delenv("TEST_COPILOT_KEY")
    (tmp_path / ".env").write_text("TEST_COPILOT_KEY=sk-from-dotenv\n", encoding="utf-8")
    config_file = tmp_path / "config.yaml"
    config_file.write_text(MINIMAL, encoding="utf-8")

    config = load_config(config_file, env_path=tmp_path / ".env")

    assert config.anthropic.api_key == "sk-from-dotenv"


def test_unset_variable_is_left_verbatim(tmp_path, monkeypatch):
    monkeypatch.delenv("TEST_COPILOT_KEY", raising=False)
    config_file = tmp_path / "config.yaml"
    config_file.write_text(MINIMAL, encoding="utf-8")

    config = load_config(config_file, env_path=tmp_path / ".env")

    assert config.anthropic.api_key == "${TEST_COPILOT_KEY}"


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml", env_path=tmp_path / ".env")


def test_duplicate_profile_ids_rejected(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "profiles:\n  - {id: a, kind: STOREFRONT}\n  - {id: a, kind: ADMIN_COPILOT}\n", encoding="utf-8"
    )

    with pytest.raises(ValidationError):
        load_config(config_file, env_path=tmp_path / ".env")


def test_example_config_is_valid(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-example")

    config = load_config(EXAMPLE, env_path=EXAMPLE.parent / "does-not-exist.env")

    storefront = config.get_profile("storefront")
    admin = config.get_profile("admin")
    assert storefront.kind == ConversationKind.STOREFRONT
    assert storefront.support_seat is True
    assert admin.kind == ConversationKind.ADMIN_COPILOT
    assert admin.human_role == ParticipantRole.ADMIN
    assert "schedule_post_campaign" in admin.ai.tools
    assert config.storage.db_path == "./data/commerce_copilot.db"
