"""Shared fixtures: a scripted model, a temporary database and wired orchestrators."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

import pytest

from commerce_copilot.ai.client import CallRequest, GenerationOptions, ModelClient, ModelReply
from commerce_copilot.ai.handler import TurnOrchestrator
from commerce_copilot.ai.tools.catalog import ToolCatalog
from commerce_copilot.config import AIConfig, AppConfig, FallbackMessages, ProfileConfig, StorageConfig, TurnConfig
from commerce_copilot.core.types import ConversationKind, ParticipantRole
from commerce_copilot.services.analytics import InMemoryAnalyticsService
from commerce_copilot.services.campaigns import Campaign, CampaignStatus, InMemoryCampaignService
from commerce_copilot.services.orders import InMemoryOrderService
from commerce_copilot.storage.conversation_repo import ConversationRepository
from commerce_copilot.storage.database import Database
from commerce_copilot.storage.models import utcnow

STOREFRONT_TOOLS = ["track_order", "get_list_orders", "get_order_detail", "create_return_request"]
ADMIN_TOOLS = [
    "get_revenue_overview",
    "get_top_products",
    "get_stock_alerts",
    "finalize_post_campaign",
    "schedule_post_campaign",
]


class ScriptedModel(ModelClient):
    """Model double that replays queued replies.

    Queue items are ``ModelReply`` objects, exceptions to raise, or async
    callables returning a ``ModelReply``. An empty queue yields an empty reply.
    """

    provider = "scripted"

    def __init__(self) -> None:
        self.first: list[Any] = []
        self.second: list[Any] = []
        self.generate_calls: list[dict[str, Any]] = []
        self.tool_result_calls: list[dict[str, Any]] = []

    def answer(self, text: str) -> ScriptedModel:
        self.first.append(ModelReply(text=text))
        return self

    def call(self, name: str, args: dict[str, Any], call_id: str = "call_1") -> ScriptedModel:
        self.first.append(ModelReply(call_request=CallRequest(id=call_id, name=name, args=args)))
        return self

    def summarize(self, text: str) -> ScriptedModel:
        self.second.append(ModelReply(text=text))
        return self

    async def generate(self, turn_text: str, history: list[dict[str, Any]], options: GenerationOptions) -> ModelReply:
        self.generate_calls.append({"text": turn_text, "history": list(history), "options": options})
        return await self._next(self.first)

    async def generate_with_tool_result(
        self,
        history: list[dict[str, Any]],
        call_request: CallRequest,
        tool_result: dict[str, Any],
        options: GenerationOptions,
    ) -> ModelReply:
        self.tool_result_calls.append(
            {"history": list(history), "call": call_request, "result": tool_result, "options": options}
        )
        return await self._next(self.second)

    @staticmethod
    async def _next(queue: list[Any]) -> ModelReply:
        if not queue:
            return ModelReply()
        item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return await item()
        return item


class SpyCampaignService(InMemoryCampaignService):
    """Counts schedule() invocations."""

    def __init__(self, campaigns: list[Campaign]):
        super().__init__(campaigns)
        self.schedule_calls = 0

    async def schedule(self, campaign_id, scheduled_at, note=None):
        self.schedule_calls += 1
        return await super().schedule(campaign_id, scheduled_at, note)


def storefront_profile(**overrides: Any) -> ProfileConfig:
    values: dict[str, Any] = {
        "id": "storefront",
        "kind": ConversationKind.STOREFRONT,
        "human_role": ParticipantRole.HUMAN,
        "ai": AIConfig(model="test-model", tools=STOREFRONT_TOOLS),
    }
    values.update(overrides)
    return ProfileConfig(**values)


def admin_profile(**overrides: Any) -> ProfileConfig:
    values: dict[str, Any] = {
        "id": "admin",
        "kind": ConversationKind.ADMIN_COPILOT,
        "human_role": ParticipantRole.ADMIN,
        "ai": AIConfig(model="test-model", temperature=0.1, tools=ADMIN_TOOLS),
    }
    values.update(overrides)
    return ProfileConfig(**values)


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "copilot.db")


@pytest.fixture
async def db(db_path):
    database = Database(db_path)
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def repo(db) -> ConversationRepository:
    return ConversationRepository(db)


@pytest.fixture
def model() -> ScriptedModel:
    return ScriptedModel()


@pytest.fixture
def orders() -> InMemoryOrderService:
    return InMemoryOrderService()


@pytest.fixture
def campaigns() -> SpyCampaignService:
    now = utcnow()
    return SpyCampaignService(
        [
            Campaign(id=1, name="Summer drop", primary_text="New linen is here", status=CampaignStatus.DRAFT),
            Campaign(
                id=2,
                name="Denim week",
                primary_text="Denim for everyone",
                status=CampaignStatus.SCHEDULED,
                scheduled_at=now + timedelta(days=2),
            ),
            Campaign(
                id=3,
                name="Flash sale",
                primary_text="48 hours only",
                status=CampaignStatus.PUBLISHED,
                published_at=now - timedelta(days=1),
            ),
        ]
    )


@pytest.fixture
def catalog(orders, campaigns) -> ToolCatalog:
    return ToolCatalog(orders, campaigns, InMemoryAnalyticsService())


@pytest.fixture
def turn_config() -> TurnConfig:
    return TurnConfig(history_limit=40, tool_timeout=2.0, max_message_length=500)


@pytest.fixture
def fallback_messages() -> FallbackMessages:
    return FallbackMessages()


@pytest.fixture
def make_orchestrator(repo, model, catalog, turn_config, fallback_messages):
    def _make(profile: ProfileConfig) -> TurnOrchestrator:
        return TurnOrchestrator(
            profile=profile,
            repo=repo,
            model_client=model,
            registry=catalog.build_registry(profile),
            turn_config=turn_config,
            messages=fallback_messages,
        )

    return _make


@pytest.fixture
def orchestrator(make_orchestrator) -> TurnOrchestrator:
    return make_orchestrator(storefront_profile())


@pytest.fixture
def admin_orchestrator(make_orchestrator) -> TurnOrchestrator:
    return make_orchestrator(admin_profile())


@pytest.fixture
def app_config(db_path) -> AppConfig:
    return AppConfig(
        storage=StorageConfig(db_path=db_path),
        turn=TurnConfig(tool_timeout=2.0),
        profiles=[
            storefront_profile(welcome_message="Hi! How can I help?", support_seat=True),
            admin_profile(),
        ],
    )


async def wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)
