"""Conversation repository: conversations, participants and the message log."""

from __future__ import annotations

import json
from typing import Any, Optional

import aiosqlite

from commerce_copilot.config import ProfileConfig
from commerce_copilot.core.types import ConversationKind, MessageRole, ParticipantRole
from commerce_copilot.errors import ForbiddenError, NotFoundError
from commerce_copilot.log import get_logger
from commerce_copilot.storage.database import Database
from commerce_copilot.storage.models import (
    Conversation,
    ConversationContext,
    ConversationPage,
    Message,
    MessagePage,
    NewMessage,
    Participant,
    from_db_time,
    to_db_time,
    utcnow,
)

logger = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 40
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def clamp_page_size(value: Optional[int]) -> int:
    if not value:
        return DEFAULT_PAGE_SIZE
    return min(max(value, 1), MAX_PAGE_SIZE)


class ConversationRepository:
    """Persistence for conversations, their participants and their messages."""

    def __init__(self, db: Database):
        self._db = db

    # ------------------------------------------------------------------
    # Conversation resolution
    # ------------------------------------------------------------------

    async def ensure_conversation(
        self,
        identity: str,
        profile: ProfileConfig,
        conversation_id: Optional[int] = None,
    ) -> ConversationContext:
        """Resolve the conversation a turn belongs to, creating it when needed.

        With ``conversation_id`` the conversation must exist, be of the
        profile's kind and have ``identity`` as a participant. Without it the
        identity's most recently updated open conversation of that kind is
        reused, or a new one is created together with its participants and
        welcome message.
        """
        if conversation_id is not None:
            conversation = await self.get_conversation(conversation_id)
            if conversation is None or conversation.kind != profile.kind:
                raise NotFoundError(f"Conversation #{conversation_id} not found")
            if await self.get_participant(conversation.id, identity) is None:
                raise ForbiddenError("You are not allowed to access this conversation")
        else:
            conversation = await self._find_latest(identity, profile.kind)

        if conversation is None:
            return await self._create(identity, profile)

        human, assistant = await self._ensure_participants(conversation.id, identity, profile)
        return ConversationContext(conversation=conversation, human=human, assistant=assistant)

    async def _find_latest(self, identity: str, kind: ConversationKind) -> Conversation | None:
        row = await self._db.fetchone(
            """SELECT c.* FROM conversations c
               JOIN participants p ON p.conversation_id = c.id AND p.identity = ?
               WHERE json_extract(c.metadata_json, '$.type') = ?
                 AND c.deleted_at IS NULL
               ORDER BY c.updated_at DESC, c.id DESC
               LIMIT 1""",
            (identity, kind.value),
        )
        return self._row_to_conversation(row) if row else None

    async def _create(self, identity: str, profile: ProfileConfig) -> ConversationContext:
        now = to_db_time(utcnow())
        metadata = {"type": profile.kind.value, "createdFor": identity}

        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """INSERT INTO conversations (metadata_json, created_at, updated_at)
                   VALUES (?, ?, ?)""",
                (json.dumps(metadata), now, now),
            )
            conversation_id = cursor.lastrowid

            await self._insert_participant(conn, conversation_id, identity, profile.human_role)
            await self._insert_participant(
                conn,
                conversation_id,
                None,
                ParticipantRole.ASSISTANT,
                {"name": profile.assistant_name, "model": profile.ai.model},
            )
            if profile.support_seat:
                await self._insert_participant(
                    conn, conversation_id, None, ParticipantRole.ADMIN, {"placeholder": True}
                )

            if profile.welcome_message:
                welcome = await self._insert_message(
                    conn,
                    conversation_id,
                    NewMessage(
                        role=MessageRole.SYSTEM,
                        content=profile.welcome_message,
                        metadata={"type": "welcome_message", "provider": "system"},
                    ),
                )
                await conn.execute(
                    """UPDATE conversations SET last_message_at = ?, last_message_id = ?
                       WHERE id = ?""",
                    (to_db_time(welcome.created_at), welcome.id, conversation_id),
                )

            conversation = self._row_to_conversation(
                await self._fetchone(conn, "SELECT * FROM conversations WHERE id = ?", (conversation_id,))
            )
            participants = await self._participants(conn, conversation_id)

        logger.info(
            "conversation_created",
            conversation_id=conversation_id,
            kind=profile.kind.value,
            identity=identity,
            support_seat=profile.support_seat,
        )
        human = next(p for p in participants if p.identity == identity)
        assistant = next(p for p in participants if p.role == ParticipantRole.ASSISTANT)
        return ConversationContext(conversation=conversation, human=human, assistant=assistant, created=True)

    async def _ensure_participants(
        self, conversation_id: int, identity: str, profile: ProfileConfig
    ) -> tuple[Participant, Participant]:
        async with self._db.transaction() as conn:
            participants = await self._participants(conn, conversation_id)
            human = next((p for p in participants if p.identity == identity), None)
            assistant = next((p for p in participants if p.role == ParticipantRole.ASSISTANT), None)

            if human is None:
                human = await self._insert_participant(conn, conversation_id, identity, profile.human_role)
                logger.debug("participant_added", conversation_id=conversation_id, identity=identity)
            if assistant is None:
                assistant = await self._insert_participant(
                    conn,
                    conversation_id,
                    None,
                    ParticipantRole.ASSISTANT,
                    {"name": profile.assistant_name, "model": profile.ai.model},
                )
                logger.debug("assistant_participant_added", conversation_id=conversation_id)
        return human, assistant

    # ------------------------------------------------------------------
    # Turn persistence
    # ------------------------------------------------------------------

    async def append_turn(
        self,
        conversation_id: int,
        human: NewMessage,
        assistant: NewMessage,
        metadata_patch: Optional[dict[str, Any]] = None,
    ) -> tuple[Message, Message]:
        """Write the human and assistant messages of one turn atomically.

        The conversation's denormalized pointers move to the assistant
        message and ``metadata_patch`` is merged into its metadata (a key
        mapped to ``None`` is removed) in the same transaction.
        """
        async with self._db.transaction() as conn:
            row = await self._fetchone(
                conn,
                "SELECT metadata_json FROM conversations WHERE id = ? AND deleted_at IS NULL",
                (conversation_id,),
            )
            if row is None:
                raise NotFoundError(f"Conversation #{conversation_id} not found")

            human_message = await self._insert_message(conn, conversation_id, human)
            assistant_message = await self._insert_message(conn, conversation_id, assistant)

            metadata = json.loads(row["metadata_json"])
            for key, value in (metadata_patch or {}).items():
                if value is None:
                    metadata.pop(key, None)
                else:
                    metadata[key] = value
            metadata["lastMessageId"] = assistant_message.id

            await conn.execute(
                """UPDATE conversations
                   SET last_message_at = ?, last_message_id = ?, metadata_json = ?, updated_at = ?
                   WHERE id = ?""",
                (
                    to_db_time(assistant_message.created_at),
                    assistant_message.id,
                    json.dumps(metadata),
                    to_db_time(utcnow()),
                    conversation_id,
                ),
            )
            await conn.execute(
                """UPDATE participants SET unread_count = unread_count + 1
                   WHERE conversation_id = ? AND identity IS NOT NULL
                     AND role != 'assistant' AND id IS NOT ?""",
                (conversation_id, human.sender_participant_id),
            )

        logger.debug(
            "turn_appended",
            conversation_id=conversation_id,
            human_message_id=human_message.id,
            assistant_message_id=assistant_message.id,
        )
        return human_message, assistant_message

    async def load_history(self, conversation_id: int, limit: int = DEFAULT_HISTORY_LIMIT) -> list[Message]:
        """Most recent ``limit`` messages, oldest first."""
        rows = await self._db.fetchall(
            """SELECT * FROM messages WHERE conversation_id = ?
               ORDER BY created_at DESC, id DESC
               LIMIT ?""",
            (conversation_id, max(limit, 0)),
        )
        return [self._row_to_message(row) for row in reversed(rows)]

    async def list_messages(
        self, conversation_id: int, page_size: Optional[int] = None, cursor: Optional[int] = None
    ) -> MessagePage:
        """Page backwards through the log; each page is returned oldest first.

        ``next_cursor`` is the id of the oldest message on the page when older
        messages remain.
        """
        size = clamp_page_size(page_size)
        rows = await self._db.fetchall(
            """SELECT * FROM messages
               WHERE conversation_id = ? AND (? IS NULL OR id < ?)
               ORDER BY created_at DESC, id DESC
               LIMIT ?""",
            (conversation_id, cursor, cursor, size + 1),
        )
        messages = [self._row_to_message(row) for row in rows]
        next_cursor = None
        if len(messages) > size:
            messages = messages[:size]
            next_cursor = messages[-1].id
        messages.reverse()
        return MessagePage(items=messages, next_cursor=next_cursor)

    # ------------------------------------------------------------------
    # Listing and participant housekeeping
    # ------------------------------------------------------------------

    async def get_conversation(self, conversation_id: int) -> Conversation | None:
        row = await self._db.fetchone(
            "SELECT * FROM conversations WHERE id = ? AND deleted_at IS NULL",
            (conversation_id,),
        )
        return self._row_to_conversation(row) if row else None

    async def get_participant(self, conversation_id: int, identity: str) -> Participant | None:
        row = await self._db.fetchone(
            "SELECT * FROM participants WHERE conversation_id = ? AND identity = ?",
            (conversation_id, identity),
        )
        return self._row_to_participant(row) if row else None

    async def list_participants(self, conversation_id: int) -> list[Participant]:
        rows = await self._db.fetchall(
            "SELECT * FROM participants WHERE conversation_id = ? ORDER BY id",
            (conversation_id,),
        )
        return [self._row_to_participant(row) for row in rows]

    async def list_conversations(
        self,
        identity: str,
        kind: ConversationKind,
        limit: Optional[int] = None,
        cursor: Optional[int] = None,
    ) -> ConversationPage:
        """List the identity's conversations of one kind, newest created first.

        Paging is keyed on the conversation id, so new activity in an older
        conversation does not shift rows between pages. ``next_cursor`` is
        the id of the last item on the page.
        """
        size = clamp_page_size(limit)
        rows = await self._db.fetchall(
            """SELECT c.* FROM conversations c
               JOIN participants p ON p.conversation_id = c.id AND p.identity = ?
               WHERE json_extract(c.metadata_json, '$.type') = ?
                 AND c.deleted_at IS NULL
                 AND (? IS NULL OR c.id < ?)
               ORDER BY c.id DESC
               LIMIT ?""",
            (identity, kind.value, cursor, cursor, size + 1),
        )
        conversations = [self._row_to_conversation(row) for row in rows]
        next_cursor = None
        if len(conversations) > size:
            conversations = conversations[:size]
            next_cursor = conversations[-1].id
        return ConversationPage(items=conversations, next_cursor=next_cursor)

    async def require_participant(self, conversation_id: int, identity: str) -> Participant:
        if await self.get_conversation(conversation_id) is None:
            raise NotFoundError(f"Conversation #{conversation_id} not found")
        participant = await self.get_participant(conversation_id, identity)
        if participant is None:
            raise ForbiddenError("You are not allowed to access this conversation")
        return participant

    async def mark_read(self, conversation_id: int, identity: str) -> None:
        participant = await self.require_participant(conversation_id, identity)
        if participant.unread_count > 0:
            async with self._db.transaction() as conn:
                await conn.execute("UPDATE participants SET unread_count = 0 WHERE id = ?", (participant.id,))

    async def soft_delete(self, conversation_id: int, identity: str) -> None:
        await self.require_participant(conversation_id, identity)
        async with self._db.transaction() as conn:
            await conn.execute(
                "UPDATE conversations SET deleted_at = ? WHERE id = ?",
                (to_db_time(utcnow()), conversation_id),
            )
        logger.info("conversation_deleted", conversation_id=conversation_id, identity=identity)

    async def claim_support_seat(self, conversation_id: int, identity: str) -> Participant:
        """Assign ``identity`` to the conversation's unclaimed operator seat."""
        if await self.get_conversation(conversation_id) is None:
            raise NotFoundError(f"Conversation #{conversation_id} not found")
        existing = await self.get_participant(conversation_id, identity)
        if existing is not None:
            return existing

        async with self._db.transaction() as conn:
            row = await self._fetchone(
                conn,
                """SELECT * FROM participants
                   WHERE conversation_id = ? AND identity IS NULL AND role != 'assistant'
                   ORDER BY id LIMIT 1""",
                (conversation_id,),
            )
            if row is None:
                raise NotFoundError("No open support seat in this conversation")
            seat = self._row_to_participant(row)
            settings = {k: v for k, v in seat.settings.items() if k != "placeholder"}
            await conn.execute(
                "UPDATE participants SET identity = ?, settings_json = ? WHERE id = ?",
                (identity, json.dumps(settings), seat.id),
            )
        logger.info("support_seat_claimed", conversation_id=conversation_id, identity=identity)
        seat.identity = identity
        seat.settings = settings
        return seat

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _fetchone(conn: aiosqlite.Connection, sql: str, params: tuple) -> aiosqlite.Row | None:
        cursor = await conn.execute(sql, params)
        return await cursor.fetchone()

    async def _participants(self, conn: aiosqlite.Connection, conversation_id: int) -> list[Participant]:
        cursor = await conn.execute(
            "SELECT * FROM participants WHERE conversation_id = ? ORDER BY id", (conversation_id,)
        )
        return [self._row_to_participant(row) for row in await cursor.fetchall()]

    async def _insert_participant(
        self,
        conn: aiosqlite.Connection,
        conversation_id: int,
        identity: Optional[str],
        role: ParticipantRole,
        settings: Optional[dict[str, Any]] = None,
    ) -> Participant:
        settings = settings or {}
        cursor = await conn.execute(
            """INSERT INTO participants (conversation_id, identity, role, settings_json, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (conversation_id, identity, role.value, json.dumps(settings), to_db_time(utcnow())),
        )
        return Participant(
            id=cursor.lastrowid,
            conversation_id=conversation_id,
            identity=identity,
            role=role,
            settings=settings,
        )

    @staticmethod
    async def _insert_message(
        conn: aiosqlite.Connection, conversation_id: int, message: NewMessage
    ) -> Message:
        cursor = await conn.execute(
            """INSERT INTO messages
               (conversation_id, sender_participant_id, role, content, metadata_json, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                conversation_id,
                message.sender_participant_id,
                message.role.value,
                message.content,
                json.dumps(message.metadata, default=str),
                to_db_time(message.created_at),
            ),
        )
        return Message(
            id=cursor.lastrowid,
            conversation_id=conversation_id,
            role=message.role,
            content=message.content,
            created_at=message.created_at,
            sender_participant_id=message.sender_participant_id,
            metadata=json.loads(json.dumps(message.metadata, default=str)),
        )

    @staticmethod
    def _row_to_conversation(row) -> Conversation:
        return Conversation(
            id=row["id"],
            metadata=json.loads(row["metadata_json"]),
            created_at=from_db_time(row["created_at"]),
            updated_at=from_db_time(row["updated_at"]),
            last_message_at=from_db_time(row["last_message_at"]),
            last_message_id=row["last_message_id"],
            deleted_at=from_db_time(row["deleted_at"]),
        )

    @staticmethod
    def _row_to_participant(row) -> Participant:
        return Participant(
            id=row["id"],
            conversation_id=row["conversation_id"],
            identity=row["identity"],
            role=ParticipantRole(row["role"]),
            unread_count=row["unread_count"],
            settings=json.loads(row["settings_json"]),
        )

    @staticmethod
    def _row_to_message(row) -> Message:
        return Message(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=MessageRole(row["role"]),
            content=row["content"],
            created_at=from_db_time(row["created_at"]),
            sender_participant_id=row["sender_participant_id"],
            metadata=json.loads(row["metadata_json"]),
        )
