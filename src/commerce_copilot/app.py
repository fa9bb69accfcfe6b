"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from typing import Optional

from commerce_copilot.ai.client import AnthropicClient, ModelClient
from commerce_copilot.ai.confirmation import ConfirmationPolicy
from commerce_copilot.ai.handler import TurnOrchestrator
from commerce_copilot.ai.tools.catalog import ToolCatalog
from commerce_copilot.config import AppConfig
from commerce_copilot.errors import NotFoundError
from commerce_copilot.log import get_logger
from commerce_copilot.services.analytics import AnalyticsService, InMemoryAnalyticsService
from commerce_copilot.services.campaigns import CampaignService, InMemoryCampaignService
from commerce_copilot.services.orders import InMemoryOrderService, OrderService
from commerce_copilot.storage.conversation_repo import ConversationRepository
from commerce_copilot.storage.database import Database

logger = get_logger(__name__)


class CopilotApp:
    """Top-level application orchestrator.

    One ``TurnOrchestrator`` per configured profile, all sharing the
    database, the business services and the model client.
    """

    def __init__(
        self,
        config: AppConfig,
        model_client: Optional[ModelClient] = None,
        orders: Optional[OrderService] = None,
        campaigns: Optional[CampaignService] = None,
        analytics: Optional[AnalyticsService] = None,
    ):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.conversation_repo = ConversationRepository(self.db)
        self.orders = orders or InMemoryOrderService()
        self.campaigns = campaigns or InMemoryCampaignService()
        self.analytics = analytics or InMemoryAnalyticsService()
        self.catalog = ToolCatalog(self.orders, self.campaigns, self.analytics)
        self._model_client = model_client
        self.orchestrators: dict[str, TurnOrchestrator] = {}
        self._started = False

    async def start(self) -> None:
        """Initialize and start all components."""
        if self._started:
            return

        # 1. Database
        await self.db.initialize()

        # 2. Model backend
        model_client = self._model_client or self._create_model_client()

        # 3. Registries and orchestrators, one per profile
        policy = ConfirmationPolicy()
        for profile in self.config.profiles:
            registry = self.catalog.build_registry(profile)
            self.orchestrators[profile.id] = TurnOrchestrator(
                profile=profile,
                repo=self.conversation_repo,
                model_client=model_client,
                registry=registry,
                turn_config=self.config.turn,
                messages=self.config.messages,
                policy=policy,
            )
            logger.info(
                "profile_started",
                profile=profile.id,
                kind=profile.kind.value,
                model=profile.ai.model,
                tools=registry.names(),
            )

        self._started = True
        logger.info("commerce_copilot_started", profile_count=len(self.orchestrators))

    async def stop(self) -> None:
        """Let in-flight turns finish, then close the database."""
        for orchestrator in self.orchestrators.values():
            await orchestrator.drain()
        await self.db.close()
        self._started = False
        logger.info("commerce_copilot_stopped")

    def orchestrator(self, profile_id: str) -> TurnOrchestrator:
        orchestrator = self.orchestrators.get(profile_id)
        if orchestrator is None:
            raise NotFoundError(f"Unknown assistant profile: {profile_id}")
        return orchestrator

    def _create_model_client(self) -> ModelClient:
        if not self.config.anthropic:
            raise ValueError("No 'anthropic' section in config")
        return AnthropicClient(self.config.anthropic)
