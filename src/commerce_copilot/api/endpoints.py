"""API endpoints for the assistant profiles."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, Response

from commerce_copilot import __version__
from commerce_copilot.ai.handler import TurnOrchestrator, TurnRequest
from commerce_copilot.api.models import (
    ConversationPageResponse,
    ConversationView,
    HealthResponse,
    MessagePageResponse,
    MessageView,
    ParticipantView,
    ToolSchemaResponse,
    TurnRequestBody,
    TurnResponse,
)
from commerce_copilot.app import CopilotApp
from commerce_copilot.errors import ProtocolError
from commerce_copilot.log import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _copilot(request: Request) -> CopilotApp:
    return request.app.state.copilot


def _orchestrator(request: Request, profile: str) -> TurnOrchestrator:
    try:
        return _copilot(request).orchestrator(profile)
    except ProtocolError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e


def _http_error(e: ProtocolError) -> HTTPException:
    logger.info("request_rejected", error=str(e), status_code=e.status_code)
    return HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/assistants/{profile}/turns", response_model=TurnResponse, tags=["Conversation"])
async def submit_turn(profile: str, body: TurnRequestBody, request: Request) -> TurnResponse:
    """Submit one human turn and return the persisted human/assistant pair.

    Model outages still answer 200 with an apology as the assistant message.
    """
    orchestrator = _orchestrator(request, profile)
    try:
        result = await orchestrator.submit_turn(
            TurnRequest(
                sender_identity=body.sender_identity,
                text=body.text,
                conversation_id=body.conversation_id,
                metadata=body.metadata,
            )
        )
    except ProtocolError as e:
        raise _http_error(e) from e

    return TurnResponse(
        conversation_id=result.conversation_id,
        human_message=MessageView.from_message(result.human_message),
        assistant_message=MessageView.from_message(result.assistant_message),
        outcome=result.outcome.value,
    )


@router.get(
    "/assistants/{profile}/conversations/{conversation_id}/messages",
    response_model=MessagePageResponse,
    tags=["Conversation"],
)
async def list_messages(
    profile: str,
    conversation_id: int,
    request: Request,
    identity: str = Query(..., min_length=1),
    page_size: Optional[int] = Query(default=None, ge=1, le=100),
    cursor: Optional[int] = Query(default=None, ge=1),
) -> MessagePageResponse:
    orchestrator = _orchestrator(request, profile)
    try:
        page = await orchestrator.list_messages(conversation_id, identity, page_size, cursor)
    except ProtocolError as e:
        raise _http_error(e) from e
    return MessagePageResponse(
        conversation_id=conversation_id,
        items=[MessageView.from_message(m, with_tool=True) for m in page.items],
        next_cursor=page.next_cursor,
    )


@router.get("/assistants/{profile}/conversations", response_model=ConversationPageResponse, tags=["Conversation"])
async def list_conversations(
    profile: str,
    request: Request,
    identity: str = Query(..., min_length=1),
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    cursor: Optional[int] = Query(default=None, ge=1),
) -> ConversationPageResponse:
    orchestrator = _orchestrator(request, profile)
    page = await orchestrator.list_conversations(identity, limit, cursor)
    return ConversationPageResponse(
        items=[ConversationView.from_conversation(c) for c in page.items],
        next_cursor=page.next_cursor,
    )


@router.post("/assistants/{profile}/conversations/{conversation_id}/read", status_code=204, tags=["Conversation"])
async def mark_read(
    profile: str,
    conversation_id: int,
    request: Request,
    identity: str = Query(..., min_length=1),
) -> Response:
    orchestrator = _orchestrator(request, profile)
    try:
        await orchestrator.mark_read(conversation_id, identity)
    except ProtocolError as e:
        raise _http_error(e) from e
    return Response(status_code=204)


@router.post(
    "/assistants/{profile}/conversations/{conversation_id}/claim",
    response_model=ParticipantView,
    tags=["Conversation"],
)
async def claim_support_seat(
    profile: str,
    conversation_id: int,
    request: Request,
    identity: str = Query(..., min_length=1),
) -> ParticipantView:
    """Assign an operator to the conversation's open support seat."""
    orchestrator = _orchestrator(request, profile)
    try:
        participant = await orchestrator.claim_support_seat(conversation_id, identity)
    except ProtocolError as e:
        raise _http_error(e) from e
    return ParticipantView.from_participant(participant)


@router.delete("/assistants/{profile}/conversations/{conversation_id}", status_code=204, tags=["Conversation"])
async def delete_conversation(
    profile: str,
    conversation_id: int,
    request: Request,
    identity: str = Query(..., min_length=1),
) -> Response:
    orchestrator = _orchestrator(request, profile)
    try:
        await orchestrator.delete_conversation(conversation_id, identity)
    except ProtocolError as e:
        raise _http_error(e) from e
    return Response(status_code=204)


@router.get("/assistants/{profile}/tools", response_model=ToolSchemaResponse, tags=["Tools"])
async def export_tools(profile: str, request: Request) -> ToolSchemaResponse:
    orchestrator = _orchestrator(request, profile)
    return ToolSchemaResponse(profile=profile, tools=orchestrator.registry.export_schema())


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
        profiles=list(_copilot(request).orchestrators),
    )
