"""Tests for the tool registry and dispatch."""

from __future__ import annotations

import asyncio

import pytest
from conftest import admin_profile, storefront_profile

from commerce_copilot.ai.confirmation import ConfirmationPolicy, ConfirmationRule
from commerce_copilot.ai.tools.base import ToolArgs, ToolContext, ToolDescriptor
from commerce_copilot.ai.tools.registry import ToolRegistry
from commerce_copilot.core.types import ParticipantRole, SideEffect
from commerce_copilot.errors import DuplicateToolError, ToolError, UnknownToolError


class EchoInput(ToolArgs):
    value: str


def _ctx(identity: str = "u1") -> ToolContext:
    return ToolContext(identity=identity, role=ParticipantRole.HUMAN, conversation_id=1)


def _descriptor(name: str = "echo", handler=None) -> ToolDescriptor:
    async def echo(args: EchoInput, ctx: ToolContext) -> dict:
        return {"echo": args.value}

    return ToolDescriptor(name=name, description="Echo", args_model=EchoInput, handler=handler or echo)


class TestRegistration:
    def test_duplicate_name_rejected(self):
        registry = ToolRegistry()
        registry.register(_descriptor())
        with pytest.raises(DuplicateToolError):
            registry.register(_descriptor())

    def test_frozen_registry_rejects_registration(self):
        registry = ToolRegistry().freeze()
        with pytest.raises(RuntimeError):
            registry.register(_descriptor())

    def test_catalog_builds_frozen_whitelist(self, catalog):
        registry = catalog.build_registry(storefront_profile())
        assert registry.frozen
        assert registry.names() == ["track_order", "get_list_orders", "get_order_detail", "create_return_request"]
        assert "schedule_post_campaign" not in registry

    def test_catalog_rejects_unknown_tool_name(self, catalog):
        profile = storefront_profile()
        profile.ai.tools = ["track_order", "wire_money"]
        with pytest.raises(ValueError, match="wire_money"):
            catalog.build_registry(profile)

    def test_export_schema_uses_camel_case(self, catalog):
        registry = catalog.build_registry(admin_profile())
        schemas = {tool["name"]: tool for tool in registry.export_schema()}

        schedule = schemas["schedule_post_campaign"]
        assert set(schedule) == {"name", "description", "input_schema"}
        properties = schedule["input_schema"]["properties"]
        assert "advertisementId" in properties
        assert "scheduledAt" in properties
        assert sorted(schedule["input_schema"]["required"]) == ["advertisementId", "scheduledAt"]


class TestDispatch:
    async def test_unknown_tool_raises_before_parsing(self):
        registry = ToolRegistry().freeze()
        with pytest.raises(UnknownToolError) as exc:
            await registry.dispatch("drop_tables", {"garbage": object()}, _ctx())
        assert exc.value.name == "drop_tables"

    async def test_success(self):
        registry = ToolRegistry()
        registry.register(_descriptor())

        result = await registry.dispatch("echo", {"value": "hi"}, _ctx())

        assert result.ok
        assert result.payload == {"echo": "hi"}
        assert result.args == {"value": "hi"}

    async def test_extra_fields_rejected(self):
        registry = ToolRegistry()
        registry.register(_descriptor())

        result = await registry.dispatch("echo", {"value": "hi", "sql": "drop"}, _ctx())

        assert not result.ok
        assert result.payload["error"].startswith("Invalid arguments")

    async def test_missing_field_rejected(self):
        registry = ToolRegistry()
        registry.register(_descriptor())

        result = await registry.dispatch("echo", {}, _ctx())

        assert "value" in result.payload["error"]

    async def test_handler_exception_becomes_error_result(self):
        async def boom(args, ctx):
            raise RuntimeError("backend exploded")

        registry = ToolRegistry()
        registry.register(_descriptor(handler=boom))

        result = await registry.dispatch("echo", {"value": "x"}, _ctx())

        assert result.payload == {"error": "backend exploded"}

    async def test_tool_error_message_is_kept(self):
        async def missing(args, ctx):
            raise ToolError("Order ORD-9 not found")

        registry = ToolRegistry()
        registry.register(_descriptor(handler=missing))

        result = await registry.dispatch("echo", {"value": "x"}, _ctx())

        assert result.payload == {"error": "Order ORD-9 not found"}

    async def test_timeout_becomes_error_result(self):
        async def slow(args, ctx):
            await asyncio.sleep(5)
            return {}

        registry = ToolRegistry()
        registry.register(_descriptor(handler=slow))

        result = await registry.dispatch("echo", {"value": "x"}, _ctx(), timeout=0.05)

        assert "timed out" in result.payload["error"]

    async def test_track_order_scoped_to_caller(self, catalog):
        registry = catalog.build_registry(storefront_profile())

        mine = await registry.dispatch("track_order", {"orderNumber": "ORD-123"}, _ctx("u1"))
        theirs = await registry.dispatch("track_order", {"orderNumber": "ORD-123"}, _ctx("u2"))

        assert mine.payload["status"] == "SHIPPED"
        assert theirs.payload == {"error": "Order ORD-123 not found"}

    async def test_read_only_tool_bypasses_policy(self, catalog):
        registry = catalog.build_registry(storefront_profile())

        result = await registry.dispatch(
            "get_list_orders", {"limit": 2}, _ctx("u1"), policy=ConfirmationPolicy()
        )

        assert not result.confirmation_required
        assert result.payload["count"] == 2
        assert [o["orderNumber"] for o in result.payload["orders"]] == ["ORD-124", "ORD-123"]

    async def test_repeated_read_only_calls_keep_their_shape(self, catalog):
        registry = catalog.build_registry(storefront_profile())

        first = await registry.dispatch("get_list_orders", {"limit": 2}, _ctx("u1"))
        second = await registry.dispatch("get_list_orders", {"limit": 2}, _ctx("u1"))

        assert _shape(first.payload) == _shape(second.payload)
        assert [_shape(o) for o in first.payload["orders"]] == [_shape(o) for o in second.payload["orders"]]

    async def test_repeated_revenue_overview_keeps_its_shape(self, catalog):
        registry = catalog.build_registry(admin_profile())
        ctx = ToolContext(identity="admin1", role=ParticipantRole.ADMIN, conversation_id=1)

        first = await registry.dispatch("get_revenue_overview", {"range": "7d"}, ctx)
        second = await registry.dispatch("get_revenue_overview", {"range": "7d"}, ctx)

        assert first.ok
        assert _shape(first.payload) == _shape(second.payload)
        assert [_shape(p) for p in first.payload["series"]] == [_shape(p) for p in second.payload["series"]]


def _shape(payload: dict) -> dict:
    return {key: type(value) for key, value in payload.items()}


def _guarded_descriptor(load_state) -> ToolDescriptor:
    async def echo(args: EchoInput, ctx: ToolContext) -> dict:
        return {"echo": args.value}

    rule = ConfirmationRule(
        load_state=load_state,
        guarded_states=frozenset({"PUBLISHED"}),
        resource_key=lambda args: args.value,
    )
    return ToolDescriptor(
        name="echo",
        description="Echo",
        args_model=EchoInput,
        handler=echo,
        side_effect=SideEffect.MUTATES_EXISTING,
        confirmation=rule,
    )


class TestDispatchStateLookup:
    async def test_state_lookup_exception_becomes_error_result(self):
        async def store_down(args, ctx):
            raise RuntimeError("campaign store down")

        registry = ToolRegistry()
        registry.register(_guarded_descriptor(store_down))

        result = await registry.dispatch("echo", {"value": "3"}, _ctx(), policy=ConfirmationPolicy())

        assert result.payload == {"error": "campaign store down"}
        assert result.args == {"value": "3"}
        assert not result.confirmation_required

    async def test_state_lookup_timeout_becomes_error_result(self):
        async def hangs(args, ctx):
            await asyncio.sleep(5)
            return "PUBLISHED"

        registry = ToolRegistry()
        registry.register(_guarded_descriptor(hangs))

        result = await registry.dispatch(
            "echo", {"value": "3"}, _ctx(), policy=ConfirmationPolicy(), timeout=0.05
        )

        assert result.payload == {"error": "echo timed out"}

    async def test_guarded_state_still_asks_for_confirmation(self):
        async def published(args, ctx):
            return "PUBLISHED"

        registry = ToolRegistry()
        registry.register(_guarded_descriptor(published))

        result = await registry.dispatch("echo", {"value": "3"}, _ctx(), policy=ConfirmationPolicy(), timeout=1.0)

        assert result.confirmation_required
        assert result.payload == {"state": "PUBLISHED", "resourceKey": "3"}
