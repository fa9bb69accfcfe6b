"""Tests for the stored tool metadata views."""

from __future__ import annotations

from commerce_copilot.ai.metadata import (
    REDACTED,
    CampaignResult,
    OrderListResult,
    OrderStatusResult,
    StockAlertsResult,
    decode_result,
    decode_tool_usage,
    redact_result,
)


def _stored(tool: str, result, **extra) -> dict:
    return {"type": "assistant_final", "toolUsed": tool, "toolArgs": {}, "toolResult": result, **extra}


class TestRedactResult:
    def test_sensitive_keys_are_masked(self):
        redacted = redact_result({"orderNumber": "ORD-1", "paidAt": "2026-01-01T00:00:00", "customerId": None})

        assert redacted == {"orderNumber": "ORD-1", "paidAt": REDACTED, "customerId": None}

    def test_long_lists_are_cut(self):
        redacted = redact_result({"orders": [{"n": i} for i in range(50)]})

        assert len(redacted["orders"]) == 20


class TestDecodeToolUsage:
    def test_no_tool_means_no_view(self):
        assert decode_tool_usage({"type": "assistant_final"}) is None

    def test_order_status_is_typed(self):
        stored = _stored(
            "track_order",
            {"orderNumber": "ORD-123", "status": "SHIPPED", "totalAmount": 459000, "isPaid": True, "paidAt": REDACTED},
        )

        usage = decode_tool_usage(stored)

        assert isinstance(usage.result, OrderStatusResult)
        assert usage.result.order_number == "ORD-123"
        assert usage.result.is_paid is True
        assert usage.model_dump(by_alias=True)["toolResult"]["paidAt"] == REDACTED

    def test_nested_items_are_typed(self):
        usage = decode_tool_usage(
            _stored(
                "get_stock_alerts",
                {"threshold": 5, "alerts": [{"productName": "Linen shirt", "stock": 0, "branchName": "District 1"}]},
            )
        )

        assert isinstance(usage.result, StockAlertsResult)
        assert usage.result.alerts[0].stock == 0
        dumped = usage.model_dump(by_alias=True)["toolResult"]
        assert dumped["alerts"][0]["productName"] == "Linen shirt"

    def test_both_campaign_tools_share_a_view(self):
        result = {"campaign": {"id": 1, "status": "SCHEDULED"}, "message": "Campaign scheduled"}

        assert isinstance(decode_result("schedule_post_campaign", result), CampaignResult)
        assert isinstance(decode_result("finalize_post_campaign", result), CampaignResult)

    def test_error_result_stays_generic(self):
        usage = decode_tool_usage(_stored("track_order", {"error": "Order ORD-999 not found"}))

        assert usage.result == {"error": "Order ORD-999 not found"}

    def test_confirmation_payload_stays_generic(self):
        payload = {"state": "PUBLISHED", "resourceKey": "3"}

        usage = decode_tool_usage(_stored("schedule_post_campaign", payload, confirmationRequired=True))

        assert usage.confirmation_required
        assert usage.result == payload

    def test_unregistered_tool_stays_generic(self):
        assert decode_result("legacy_tool", {"anything": 1}) == {"anything": 1}

    def test_mismatched_result_falls_back(self):
        result = {"orders": "not a list", "count": 1}

        assert decode_result("get_list_orders", result) == result
        assert isinstance(
            decode_result("get_list_orders", {"orders": [{"orderNumber": "ORD-1", "status": "PENDING"}], "count": 1}),
            OrderListResult,
        )
