"""Storefront assistant tools: order tracking, order history and returns."""

from __future__ import annotations

from typing import Annotated, Optional

from pydantic import Field

from commerce_copilot.ai.confirmation import ConfirmationRule
from commerce_copilot.ai.tools.base import ToolArgs, ToolContext, ToolDescriptor
from commerce_copilot.core.types import SideEffect
from commerce_copilot.errors import ToolError
from commerce_copilot.services.orders import OrderService, OrderStatus

OrderNumber = Annotated[
    str,
    Field(
        description="The order number exactly as the customer gave it (e.g. ORD-123)",
        min_length=1,
        max_length=40,
        examples=["ORD-123"],
    ),
]


class OrderLookupInput(ToolArgs):
    order_number: OrderNumber


class ListOrdersInput(ToolArgs):
    status: Optional[list[OrderStatus]] = Field(
        default=None,
        description="Only orders in these statuses",
    )
    limit: int = Field(default=5, ge=1, le=20, description="Maximum number of orders, default 5")
    offset: int = Field(default=0, ge=0, description="Pagination offset, default 0")


class ReturnItem(ToolArgs):
    product_id: str = Field(..., min_length=1)
    color: Optional[str] = None
    size: Optional[str] = None


class ReturnRequestInput(ToolArgs):
    order_number: OrderNumber
    items: list[ReturnItem] = Field(..., min_length=1, description="The products being returned")
    reason: str = Field(..., min_length=1, max_length=500)
    note: Optional[str] = Field(default=None, max_length=1000)
    confirm: bool = Field(
        default=False,
        description=(
            "Set to true only after the customer explicitly confirmed replacing an open "
            "return request or acting on a cancelled order"
        ),
    )


def create_track_order_tool(orders: OrderService) -> ToolDescriptor:
    async def handler(args: OrderLookupInput, ctx: ToolContext) -> dict:
        order = await orders.get_order(args.order_number, ctx.identity)
        if order is None:
            raise ToolError(f"Order {args.order_number} not found")
        return order.status_view()

    return ToolDescriptor(
        name="track_order",
        description="Look up the current status and payment state of one of the customer's orders.",
        args_model=OrderLookupInput,
        handler=handler,
    )


def create_get_order_detail_tool(orders: OrderService) -> ToolDescriptor:
    async def handler(args: OrderLookupInput, ctx: ToolContext) -> dict:
        order = await orders.get_order(args.order_number, ctx.identity)
        if order is None:
            raise ToolError(f"Order {args.order_number} not found")
        return order.detail_view()

    return ToolDescriptor(
        name="get_order_detail",
        description="Get the full detail of one order: items, amounts and any return request.",
        args_model=OrderLookupInput,
        handler=handler,
    )


def create_get_list_orders_tool(orders: OrderService) -> ToolDescriptor:
    async def handler(args: ListOrdersInput, ctx: ToolContext) -> dict:
        statuses = [s.value for s in args.status] if args.status else None
        found = await orders.list_recent_orders(ctx.identity, args.limit, args.offset, statuses)
        return {"orders": [o.summary_view() for o in found], "count": len(found)}

    return ToolDescriptor(
        name="get_list_orders",
        description=(
            "List the current customer's recent orders, newest first, optionally filtered by status. "
            "The client renders the list as cards, so reply briefly instead of repeating every order."
        ),
        args_model=ListOrdersInput,
        handler=handler,
    )


def create_return_request_tool(orders: OrderService) -> ToolDescriptor:
    async def load_state(args: ReturnRequestInput, ctx: ToolContext) -> Optional[str]:
        order = await orders.get_order(args.order_number, ctx.identity)
        return order.status.value if order else None

    def explain(tool_name: str, state: str) -> str:
        if state == OrderStatus.CANCELLED:
            return "This order has already been cancelled. Do you still want to submit a request for it?"
        return (
            "A return request is already open for this order. "
            "Do you want to replace it with the new details?"
        )

    async def handler(args: ReturnRequestInput, ctx: ToolContext) -> dict:
        return await orders.request_return(
            args.order_number,
            ctx.identity,
            [item.product_id for item in args.items],
            args.reason,
            args.note,
        )

    return ToolDescriptor(
        name="create_return_request",
        description=(
            "Create a return request for a shipped or delivered order, or cancel an order that is still pending. "
            "Ask for the order number first; never call this with guessed values."
        ),
        args_model=ReturnRequestInput,
        handler=handler,
        side_effect=SideEffect.MUTATES_EXISTING,
        confirmation=ConfirmationRule(
            load_state=load_state,
            guarded_states=frozenset({OrderStatus.RETURN_REQUESTED.value, OrderStatus.CANCELLED.value}),
            resource_key=lambda args: args.order_number.upper(),
            explain=explain,
        ),
    )
