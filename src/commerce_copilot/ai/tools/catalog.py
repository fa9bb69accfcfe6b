"""Builds the per-profile tool registries from the available business tools."""

from __future__ import annotations

from collections.abc import Callable

from commerce_copilot.ai.tools import admin, storefront
from commerce_copilot.ai.tools.base import ToolDescriptor
from commerce_copilot.ai.tools.registry import ToolRegistry
from commerce_copilot.config import ProfileConfig
from commerce_copilot.log import get_logger
from commerce_copilot.services.analytics import AnalyticsService
from commerce_copilot.services.campaigns import CampaignService
from commerce_copilot.services.orders import OrderService

logger = get_logger(__name__)


class ToolCatalog:
    """Every tool the backend can offer, keyed by name.

    A profile's ``ai.tools`` list selects the subset its registry exposes.
    """

    def __init__(self, orders: OrderService, campaigns: CampaignService, analytics: AnalyticsService):
        factories: list[Callable[[], ToolDescriptor]] = [
            lambda: storefront.create_track_order_tool(orders),
            lambda: storefront.create_get_list_orders_tool(orders),
            lambda: storefront.create_get_order_detail_tool(orders),
            lambda: storefront.create_return_request_tool(orders),
            lambda: admin.create_revenue_overview_tool(analytics),
            lambda: admin.create_top_products_tool(analytics),
            lambda: admin.create_stock_alerts_tool(analytics),
            lambda: admin.create_finalize_campaign_tool(campaigns),
            lambda: admin.create_schedule_campaign_tool(campaigns),
        ]
        self._tools: dict[str, ToolDescriptor] = {}
        for factory in factories:
            descriptor = factory()
            self._tools[descriptor.name] = descriptor

    def build_registry(self, profile: ProfileConfig) -> ToolRegistry:
        """Register the profile's whitelisted tools and freeze the registry."""
        registry = ToolRegistry(name=profile.id)
        for name in profile.ai.tools:
            descriptor = self._tools.get(name)
            if descriptor is None:
                raise ValueError(f"Profile '{profile.id}' lists unknown tool '{name}'")
            registry.register(descriptor)
        logger.info("registry_built", profile=profile.id, tools=registry.names())
        return registry.freeze()
