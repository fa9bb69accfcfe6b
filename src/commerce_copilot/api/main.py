"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from commerce_copilot import __version__
from commerce_copilot.api.endpoints import router
from commerce_copilot.app import CopilotApp


def create_app(copilot: CopilotApp) -> FastAPI:
    """Build the HTTP app around a (not yet started) ``CopilotApp``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await copilot.start()
        try:
            yield
        finally:
            await copilot.stop()

    app = FastAPI(
        title="Commerce Copilot",
        description=(
            "Tool-augmented conversational assistants for a commerce backend: "
            "a storefront shopping assistant and an admin copilot."
        ),
        version=__version__,
        lifespan=lifespan,
        tags_metadata=[
            {"name": "Conversation", "description": "Submit turns and read conversation history."},
            {"name": "Tools", "description": "Tool schemas exposed to the model per profile."},
            {"name": "Health", "description": "Service health monitoring and status checks."},
        ],
    )
    app.state.copilot = copilot
    app.include_router(router)
    return app
