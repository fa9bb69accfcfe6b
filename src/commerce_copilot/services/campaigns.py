"""Post campaign (advertisement) service interface and implementations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Optional, Protocol

from commerce_copilot.errors import ToolArgumentError, ToolError
from commerce_copilot.storage.models import utcnow


class CampaignStatus(StrEnum):
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    PUBLISHED = "PUBLISHED"
    FAILED = "FAILED"


@dataclass
class Campaign:
    id: int
    name: str
    primary_text: str
    status: CampaignStatus = CampaignStatus.DRAFT
    created_by: Optional[str] = None
    product_id: Optional[int] = None
    product_name: Optional[str] = None
    headline: Optional[str] = None
    description: Optional[str] = None
    call_to_action: Optional[str] = None
    cta_url: Optional[str] = None
    hashtags: list[str] = field(default_factory=list)
    post_type: str = "photo"
    image: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    note: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "primaryText": self.primary_text,
            "headline": self.headline,
            "productId": self.product_id,
            "productName": self.product_name,
            "hashtags": self.hashtags,
            "postType": self.post_type,
            "image": self.image,
            "scheduledAt": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "publishedAt": self.published_at.isoformat() if self.published_at else None,
        }


class CampaignService(Protocol):
    """Interface for the campaign store behind the admin copilot tools."""

    async def get(self, campaign_id: int) -> Campaign | None: ...

    async def create_draft(self, created_by: str, **fields: Any) -> Campaign:
        """Persist a finalized campaign as a DRAFT."""
        ...

    async def schedule(
        self, campaign_id: int, scheduled_at: datetime, note: Optional[str] = None
    ) -> Campaign:
        """Set (or move) the publish time. Published campaigns go back to SCHEDULED."""
        ...


class InMemoryCampaignService:
    """In-memory campaign store."""

    def __init__(self, campaigns: Optional[list[Campaign]] = None):
        self.campaigns: dict[int, Campaign] = {c.id: c for c in (campaigns or [])}
        self._next_id = max(self.campaigns, default=0) + 1

    async def get(self, campaign_id: int) -> Campaign | None:
        return self.campaigns.get(campaign_id)

    async def create_draft(self, created_by: str, **fields: Any) -> Campaign:
        campaign = Campaign(id=self._next_id, created_by=created_by, **fields)
        self.campaigns[campaign.id] = campaign
        self._next_id += 1
        return campaign

    async def schedule(
        self, campaign_id: int, scheduled_at: datetime, note: Optional[str] = None
    ) -> Campaign:
        campaign = self.campaigns.get(campaign_id)
        if campaign is None:
            raise ToolError(f"Campaign #{campaign_id} not found")
        if scheduled_at <= utcnow():
            raise ToolArgumentError("scheduledAt must be in the future")
        campaign.scheduled_at = scheduled_at
        campaign.status = CampaignStatus.SCHEDULED
        campaign.published_at = None
        if note:
            campaign.note = note
        campaign.updated_at = utcnow()
        return campaign
