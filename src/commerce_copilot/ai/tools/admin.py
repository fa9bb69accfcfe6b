"""Admin copilot tools: sales reporting and post campaign handoff."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal, Optional

from pydantic import Field, field_validator

from commerce_copilot.ai.confirmation import ConfirmationRule
from commerce_copilot.ai.tools.base import ToolArgs, ToolContext, ToolDescriptor
from commerce_copilot.core.types import SideEffect
from commerce_copilot.errors import ToolError
from commerce_copilot.services.analytics import DEFAULT_RANGE, AnalyticsService
from commerce_copilot.services.campaigns import CampaignService, CampaignStatus

RangeKey = Literal["7d", "30d", "90d"]


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


class RevenueOverviewInput(ToolArgs):
    range: RangeKey = Field(default=DEFAULT_RANGE, description="Reporting window")
    granularity: Optional[Literal["day", "week", "month"]] = None


class TopProductsInput(ToolArgs):
    range: RangeKey = Field(default=DEFAULT_RANGE, description="Reporting window")
    limit: int = Field(default=5, description="Number of products, default 5 (max 20)")


class StockAlertsInput(ToolArgs):
    threshold: int = Field(default=20, description="Alert when stock is at or below this level")
    branch_id: Optional[int] = Field(default=None, description="Only this branch")
    limit: int = Field(default=10, description="Maximum number of alerts (max 50)")


class CampaignDraft(ToolArgs):
    name: str = Field(..., min_length=1, max_length=200, description="Campaign name shown in the ads manager")
    primary_text: str = Field(..., min_length=1, description="The agreed caption")
    product_id: Optional[int] = None
    product_name: Optional[str] = None
    headline: Optional[str] = None
    description: Optional[str] = None
    call_to_action: Optional[str] = None
    cta_url: Optional[str] = None
    hashtags: list[str] = Field(default_factory=list)
    post_type: Literal["link", "photo"] = "photo"
    image: Optional[str] = Field(default=None, description="URL of an existing asset")


class FinalizeCampaignInput(ToolArgs):
    campaign: CampaignDraft


class ScheduleCampaignInput(ToolArgs):
    advertisement_id: int = Field(..., ge=1, description="Id of a saved campaign")
    scheduled_at: datetime = Field(..., description="Publish time, ISO 8601")
    note: Optional[str] = None
    confirm: bool = Field(
        default=False,
        description="Set to true only after the admin explicitly agreed to move an already scheduled or published post",
    )

    @field_validator("scheduled_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=UTC)


def create_revenue_overview_tool(analytics: AnalyticsService) -> ToolDescriptor:
    async def handler(args: RevenueOverviewInput, ctx: ToolContext) -> dict:
        return await analytics.revenue_overview(args.range, args.granularity)

    return ToolDescriptor(
        name="get_revenue_overview",
        description="Revenue, order count, units sold and average order value for the last 7, 30 or 90 days.",
        args_model=RevenueOverviewInput,
        handler=handler,
    )


def create_top_products_tool(analytics: AnalyticsService) -> ToolDescriptor:
    async def handler(args: TopProductsInput, ctx: ToolContext) -> dict:
        return await analytics.top_products(args.range, _clamp(args.limit, 1, 20))

    return ToolDescriptor(
        name="get_top_products",
        description="Best-selling products by revenue over a reporting window.",
        args_model=TopProductsInput,
        handler=handler,
    )


def create_stock_alerts_tool(analytics: AnalyticsService) -> ToolDescriptor:
    async def handler(args: StockAlertsInput, ctx: ToolContext) -> dict:
        return await analytics.stock_alerts(
            threshold=_clamp(args.threshold, 0, 1000),
            limit=_clamp(args.limit, 1, 50),
            branch_id=args.branch_id,
        )

    return ToolDescriptor(
        name="get_stock_alerts",
        description="SKUs whose stock is at or below a threshold, lowest first, so they can be restocked.",
        args_model=StockAlertsInput,
        handler=handler,
    )


def create_finalize_campaign_tool(campaigns: CampaignService) -> ToolDescriptor:
    async def handler(args: FinalizeCampaignInput, ctx: ToolContext) -> dict:
        campaign = await campaigns.create_draft(ctx.identity, **args.campaign.model_dump())
        return {"campaign": campaign.to_dict(), "message": "Campaign saved as draft"}

    return ToolDescriptor(
        name="finalize_post_campaign",
        description=(
            "Save a campaign the admin has approved as a draft in the ads manager, using the agreed content. "
            "Only call this once the admin has signed off on the caption."
        ),
        args_model=FinalizeCampaignInput,
        handler=handler,
        side_effect=SideEffect.CREATES_NEW,
    )


def create_schedule_campaign_tool(campaigns: CampaignService) -> ToolDescriptor:
    async def load_state(args: ScheduleCampaignInput, ctx: ToolContext) -> Optional[str]:
        campaign = await campaigns.get(args.advertisement_id)
        if campaign is None:
            raise ToolError(f"Campaign #{args.advertisement_id} not found")
        return campaign.status.value

    def explain(tool_name: str, state: str) -> str:
        if state == CampaignStatus.PUBLISHED:
            return "This campaign has already been published. Do you want to schedule it to go out again?"
        return "This campaign is already scheduled. Do you want to move it to the new time?"

    async def handler(args: ScheduleCampaignInput, ctx: ToolContext) -> dict:
        campaign = await campaigns.schedule(args.advertisement_id, args.scheduled_at, args.note)
        return {"campaign": campaign.to_dict(), "message": "Campaign scheduled"}

    return ToolDescriptor(
        name="schedule_post_campaign",
        description="Schedule a saved campaign for publishing at the agreed time.",
        args_model=ScheduleCampaignInput,
        handler=handler,
        side_effect=SideEffect.MUTATES_EXISTING,
        confirmation=ConfirmationRule(
            load_state=load_state,
            guarded_states=frozenset({CampaignStatus.SCHEDULED.value, CampaignStatus.PUBLISHED.value}),
            resource_key=lambda args: str(args.advertisement_id),
            explain=explain,
        ),
    )
