"""Typed views over the open metadata map stored on assistant messages."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from commerce_copilot.log import get_logger

logger = get_logger(__name__)

REDACTED = "[redacted]"

# Result fields the client never needs to see again in the message log.
_SENSITIVE_KEYS = frozenset({"paidAt", "ctaUrl", "image", "customerId", "email", "phone", "address"})
_MAX_LIST_ITEMS = 20


def redact_result(payload: Any, depth: int = 0) -> Any:
    """Copy of a tool result safe to persist on the assistant message.

    Sensitive keys are masked and long lists are cut.
    """
    if depth > 6:
        return REDACTED
    if isinstance(payload, dict):
        return {
            key: (REDACTED if key in _SENSITIVE_KEYS and value is not None else redact_result(value, depth + 1))
            for key, value in payload.items()
        }
    if isinstance(payload, list):
        return [redact_result(item, depth + 1) for item in payload[:_MAX_LIST_ITEMS]]
    return payload


class ResultView(BaseModel):
    """Read-side decoder for one tool's stored result.

    Fields are camelCase on the wire. Unknown keys are kept so an older
    message still renders after a tool grows new fields.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class OrderStatusResult(ResultView):
    order_number: str
    status: str
    total_amount: Optional[int] = None
    is_paid: Optional[bool] = None


class OrderDetailResult(OrderStatusResult):
    created_at: Optional[str] = None
    items: list[dict[str, Any]] = Field(default_factory=list)
    return_request: Optional[dict[str, Any]] = None


class OrderSummary(ResultView):
    order_number: str
    status: str
    created_at: Optional[str] = None


class OrderListResult(ResultView):
    orders: list[OrderSummary]
    count: int


class ReturnRequestResult(ResultView):
    order_number: str
    status: str
    message: str


class RevenuePoint(ResultView):
    period: str
    revenue: int
    orders: int
    units: int


class RevenueOverviewResult(ResultView):
    range: str
    granularity: str
    total_revenue: int
    total_orders: int
    total_units: int
    series: list[RevenuePoint] = Field(default_factory=list)


class TopProduct(ResultView):
    product_id: int
    name: str
    revenue: int
    units_sold: int


class TopProductsResult(ResultView):
    range: str
    products: list[TopProduct]


class StockAlert(ResultView):
    product_name: str
    stock: int
    branch_name: Optional[str] = None


class StockAlertsResult(ResultView):
    threshold: int
    alerts: list[StockAlert]


class CampaignResult(ResultView):
    campaign: dict[str, Any]
    message: str


RESULT_VIEWS: dict[str, type[ResultView]] = {
    "track_order": OrderStatusResult,
    "get_order_detail": OrderDetailResult,
    "get_list_orders": OrderListResult,
    "create_return_request": ReturnRequestResult,
    "get_revenue_overview": RevenueOverviewResult,
    "get_top_products": TopProductsResult,
    "get_stock_alerts": StockAlertsResult,
    "finalize_post_campaign": CampaignResult,
    "schedule_post_campaign": CampaignResult,
}


def decode_result(tool_name: str, result: Any) -> Any:
    """Decode a stored result through its tool's view.

    Error payloads, tools without a view and results that no longer match
    their view are returned unchanged.
    """
    view = RESULT_VIEWS.get(tool_name)
    if view is None or not isinstance(result, dict) or "error" in result:
        return result
    try:
        return view.model_validate(result)
    except ValidationError as e:
        logger.debug("tool_result_view_mismatch", tool=tool_name, errors=e.error_count())
        return result


class ToolUsage(BaseModel):
    """What a UI needs to render the tool part of an assistant message."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(alias="toolUsed")
    args: dict[str, Any] = Field(default_factory=dict, alias="toolArgs")
    result: Optional[Any] = Field(default=None, alias="toolResult")
    confirmation_required: bool = Field(default=False, alias="confirmationRequired")
    outcome: Optional[str] = None


def decode_tool_usage(metadata: dict[str, Any]) -> ToolUsage | None:
    """Decode the tool view of a stored message, or None when no tool ran.

    ``result`` holds the tool's typed view when one is registered for it,
    and the stored map otherwise.
    """
    if not metadata.get("toolUsed"):
        return None
    usage = ToolUsage.model_validate(metadata)
    if not usage.confirmation_required:
        usage.result = decode_result(usage.name, usage.result)
    return usage
