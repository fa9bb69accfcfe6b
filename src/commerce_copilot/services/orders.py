"""Order lookup and return-request service interface and implementations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Optional, Protocol

from commerce_copilot.errors import ToolError
from commerce_copilot.storage.models import utcnow


class OrderStatus(StrEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    RETURN_REQUESTED = "RETURN_REQUESTED"
    RETURNED = "RETURNED"


@dataclass
class OrderItem:
    product_id: str
    name: str
    quantity: int
    unit_price: int
    color: Optional[str] = None
    size: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "color": self.color,
            "size": self.size,
        }


@dataclass
class ReturnRequest:
    reason: str
    product_ids: list[str]
    note: Optional[str] = None
    requested_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "reason": self.reason,
            "productIds": self.product_ids,
            "note": self.note,
            "requestedAt": self.requested_at.isoformat(),
        }


@dataclass
class Order:
    order_number: str
    customer_id: str
    status: OrderStatus
    total_amount: int
    created_at: datetime
    items: list[OrderItem] = field(default_factory=list)
    paid_at: Optional[datetime] = None
    return_request: Optional[ReturnRequest] = None

    def status_view(self) -> dict:
        return {
            "orderNumber": self.order_number,
            "status": self.status.value,
            "totalAmount": self.total_amount,
            "isPaid": self.paid_at is not None,
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
        }

    def summary_view(self) -> dict:
        return {
            "orderNumber": self.order_number,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
        }

    def detail_view(self) -> dict:
        return {
            **self.status_view(),
            "createdAt": self.created_at.isoformat(),
            "items": [item.to_dict() for item in self.items],
            "returnRequest": self.return_request.to_dict() if self.return_request else None,
        }


class OrderService(Protocol):
    """Interface for the order backend the storefront tools talk to."""

    async def get_order(self, order_number: str, customer_id: str) -> Order | None:
        """Look up one of the customer's orders, or None if it is not theirs."""
        ...

    async def list_recent_orders(
        self, customer_id: str, limit: int = 5, offset: int = 0, statuses: Optional[list[str]] = None
    ) -> list[Order]:
        """Newest first."""
        ...

    async def request_return(
        self,
        order_number: str,
        customer_id: str,
        product_ids: list[str],
        reason: str,
        note: Optional[str] = None,
    ) -> dict:
        """File a return (or, for a pending order, cancel it).

        Returns:
            ``{"orderNumber", "status", "message"}``
        """
        ...


class InMemoryOrderService:
    """In-memory order service seeded with demo orders."""

    RETURNABLE = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.RETURN_REQUESTED})

    def __init__(self, orders: Optional[list[Order]] = None):
        self.orders: dict[str, Order] = {o.order_number: o for o in (orders or self._create_mock_orders())}

    async def get_order(self, order_number: str, customer_id: str) -> Order | None:
        order = self.orders.get(order_number.strip().upper())
        if order is None or order.customer_id != customer_id:
            return None
        return order

    async def list_recent_orders(
        self, customer_id: str, limit: int = 5, offset: int = 0, statuses: Optional[list[str]] = None
    ) -> list[Order]:
        wanted = {s.upper() for s in statuses} if statuses else None
        orders = sorted(
            (
                o
                for o in self.orders.values()
                if o.customer_id == customer_id and (wanted is None or o.status.value in wanted)
            ),
            key=lambda o: o.created_at,
            reverse=True,
        )
        return orders[offset : offset + limit]

    async def request_return(
        self,
        order_number: str,
        customer_id: str,
        product_ids: list[str],
        reason: str,
        note: Optional[str] = None,
    ) -> dict:
        order = await self.get_order(order_number, customer_id)
        if order is None:
            raise ToolError(f"Order {order_number} not found")

        if order.status == OrderStatus.CANCELLED:
            return {
                "orderNumber": order.order_number,
                "status": order.status.value,
                "message": "Order is already cancelled",
            }

        if order.status == OrderStatus.PENDING:
            order.status = OrderStatus.CANCELLED
            return {
                "orderNumber": order.order_number,
                "status": order.status.value,
                "message": "Order cancelled before shipping",
            }

        if order.status not in self.RETURNABLE:
            raise ToolError(f"Order {order.order_number} is {order.status.value} and cannot be returned yet")

        known = {item.product_id for item in order.items}
        unknown = [pid for pid in product_ids if pid not in known]
        if unknown:
            raise ToolError(f"Products not in order {order.order_number}: {', '.join(unknown)}")

        replaced = order.return_request is not None
        order.return_request = ReturnRequest(reason=reason, product_ids=product_ids, note=note)
        order.status = OrderStatus.RETURN_REQUESTED
        return {
            "orderNumber": order.order_number,
            "status": order.status.value,
            "message": "Return request updated" if replaced else "Return request created",
        }

    def _create_mock_orders(self) -> list[Order]:
        """Create mock order data for demos."""
        now = utcnow()
        return [
            Order(
                order_number="ORD-123",
                customer_id="u1",
                status=OrderStatus.SHIPPED,
                total_amount=459000,
                created_at=now - timedelta(days=3),
                paid_at=now - timedelta(days=3),
                items=[
                    OrderItem("P-100", "Linen shirt", 1, 299000, color="white", size="M"),
                    OrderItem("P-205", "Canvas belt", 1, 160000, color="brown"),
                ],
            ),
            Order(
                order_number="ORD-124",
                customer_id="u1",
                status=OrderStatus.PENDING,
                total_amount=189000,
                created_at=now - timedelta(hours=5),
                items=[OrderItem("P-310", "Cotton tee", 1, 189000, color="black", size="L")],
            ),
            Order(
                order_number="ORD-101",
                customer_id="u1",
                status=OrderStatus.DELIVERED,
                total_amount=720000,
                created_at=now - timedelta(days=20),
                paid_at=now - timedelta(days=20),
                items=[OrderItem("P-501", "Denim jacket", 1, 720000, size="M")],
            ),
            Order(
                order_number="ORD-200",
                customer_id="u2",
                status=OrderStatus.DELIVERED,
                total_amount=350000,
                created_at=now - timedelta(days=8),
                paid_at=now - timedelta(days=8),
                items=[OrderItem("P-120", "Wool scarf", 1, 350000, color="grey")],
            ),
        ]
