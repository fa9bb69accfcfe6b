"""Sales analytics and inventory service interface and implementations."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Optional, Protocol

from commerce_copilot.storage.models import utcnow

RANGE_DAYS = {"7d": 7, "30d": 30, "90d": 90}
DEFAULT_RANGE = "30d"
DEFAULT_GRANULARITY = {"7d": "day", "30d": "day", "90d": "week"}


@dataclass
class SaleLine:
    """One fulfilled order line."""

    order_number: str
    product_id: int
    product_name: str
    quantity: int
    amount: int
    sold_at: datetime


@dataclass
class StockLevel:
    inventory_id: int
    variant_id: int
    product_id: int
    product_name: str
    stock: int
    branch_id: Optional[int] = None
    branch_name: Optional[str] = None


class AnalyticsService(Protocol):
    """Interface for the read-only reporting backend of the admin copilot."""

    async def revenue_overview(self, range_key: str, granularity: Optional[str] = None) -> dict[str, Any]: ...

    async def top_products(self, range_key: str, limit: int) -> dict[str, Any]: ...

    async def stock_alerts(self, threshold: int, limit: int, branch_id: Optional[int] = None) -> dict[str, Any]: ...


def _bucket(day: date, granularity: str) -> str:
    if granularity == "week":
        return (day - timedelta(days=day.weekday())).isoformat()
    if granularity == "month":
        return day.replace(day=1).isoformat()
    return day.isoformat()


class InMemoryAnalyticsService:
    """Aggregates over in-memory sale lines and stock levels."""

    def __init__(self, sales: Optional[list[SaleLine]] = None, stock: Optional[list[StockLevel]] = None):
        self.sales = sales if sales is not None else self._create_mock_sales()
        self.stock = stock if stock is not None else self._create_mock_stock()

    def _window(self, range_key: str) -> list[SaleLine]:
        start = utcnow() - timedelta(days=RANGE_DAYS[range_key])
        return [line for line in self.sales if line.sold_at >= start]

    async def revenue_overview(self, range_key: str, granularity: Optional[str] = None) -> dict[str, Any]:
        granularity = granularity or DEFAULT_GRANULARITY[range_key]
        lines = self._window(range_key)

        series: dict[str, dict[str, int]] = defaultdict(lambda: {"revenue": 0, "orders": 0, "units": 0})
        orders_per_bucket: dict[str, set[str]] = defaultdict(set)
        for line in lines:
            key = _bucket(line.sold_at.date(), granularity)
            series[key]["revenue"] += line.amount
            series[key]["units"] += line.quantity
            orders_per_bucket[key].add(line.order_number)
        for key, numbers in orders_per_bucket.items():
            series[key]["orders"] = len(numbers)

        total_revenue = sum(line.amount for line in lines)
        total_orders = len({line.order_number for line in lines})
        periods = sorted(series)
        return {
            "range": range_key,
            "granularity": granularity,
            "periodStart": periods[0] if periods else None,
            "periodEnd": periods[-1] if periods else None,
            "totalRevenue": total_revenue,
            "totalOrders": total_orders,
            "totalUnits": sum(line.quantity for line in lines),
            "averageOrderValue": round(total_revenue / total_orders, 2) if total_orders else 0,
            "series": [{"period": p, **series[p]} for p in periods],
        }

    async def top_products(self, range_key: str, limit: int) -> dict[str, Any]:
        revenue: dict[int, int] = defaultdict(int)
        units: dict[int, int] = defaultdict(int)
        names: dict[int, str] = {}
        for line in self._window(range_key):
            revenue[line.product_id] += line.amount
            units[line.product_id] += line.quantity
            names[line.product_id] = line.product_name

        ranked = sorted(revenue, key=lambda pid: revenue[pid], reverse=True)[:limit]
        total = sum(revenue[pid] for pid in ranked)
        return {
            "range": range_key,
            "products": [
                {
                    "productId": pid,
                    "name": names[pid],
                    "revenue": revenue[pid],
                    "unitsSold": units[pid],
                    "revenueShare": round(revenue[pid] / total, 4) if total else 0,
                }
                for pid in ranked
            ],
        }

    async def stock_alerts(self, threshold: int, limit: int, branch_id: Optional[int] = None) -> dict[str, Any]:
        rows = [
            level
            for level in self.stock
            if level.stock <= threshold and (branch_id is None or level.branch_id == branch_id)
        ]
        rows.sort(key=lambda level: level.stock)
        return {
            "threshold": threshold,
            "alerts": [
                {
                    "inventoryId": level.inventory_id,
                    "variantId": level.variant_id,
                    "productId": level.product_id,
                    "productName": level.product_name,
                    "stock": level.stock,
                    "branchId": level.branch_id,
                    "branchName": level.branch_name,
                }
                for level in rows[:limit]
            ],
        }

    def _create_mock_sales(self) -> list[SaleLine]:
        now = utcnow()
        catalog = [(1, "Linen shirt", 299000), (2, "Denim jacket", 720000), (3, "Cotton tee", 189000)]
        lines = []
        for day in range(0, 60, 2):
            for offset, (pid, name, price) in enumerate(catalog):
                quantity = 1 + (day + offset) % 3
                lines.append(
                    SaleLine(
                        order_number=f"ORD-S{day:03d}{offset}",
                        product_id=pid,
                        product_name=name,
                        quantity=quantity,
                        amount=price * quantity,
                        sold_at=now - timedelta(days=day, hours=offset),
                    )
                )
        return lines

    def _create_mock_stock(self) -> list[StockLevel]:
        return [
            StockLevel(1, 11, 1, "Linen shirt", 4, 1, "District 1"),
            StockLevel(2, 21, 2, "Denim jacket", 35, 1, "District 1"),
            StockLevel(3, 31, 3, "Cotton tee", 12, 2, "Thu Duc"),
            StockLevel(4, 12, 1, "Linen shirt", 0, 2, "Thu Duc"),
        ]
