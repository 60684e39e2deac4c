"""
Conversation store
Batched append of a user/assistant pair, ordered listing, cascade delete.
"""
import asyncio
from datetime import datetime
from typing import List, Optional

from beanie import PydanticObjectId
from pymongo.errors import BulkWriteError, PyMongoError

from app.core.errors import PersistenceError
from app.core.logging import get_logger
from app.models.bot import Bot
from app.models.conversation import ConversationTurn

logger = get_logger(__name__)


class ConversationStore:
    async def append_turn(self, bot_id: str, user_text: str, assistant_text: str) -> List[ConversationTurn]:
        """
        Write one user turn and its assistant turn as a single insert.

        A partial write is rolled back and reported, so a user turn is
        never left without its reply. If the caller is cancelled mid-write,
        the insert is allowed to land and is then removed again.
        """
        if not await self._bot_exists(bot_id):
            raise PersistenceError(f"Bot {bot_id} no longer exists")

        now = datetime.utcnow()
        turns = [
            ConversationTurn(id=PydanticObjectId(), bot_id=bot_id, role="user", content=user_text, created_at=now),
            ConversationTurn(id=PydanticObjectId(), bot_id=bot_id, role="assistant", content=assistant_text, created_at=now),
        ]
        ids = [turn.id for turn in turns]

        write = asyncio.ensure_future(self._write(bot_id, turns, ids))
        try:
            await asyncio.shield(write)
        except asyncio.CancelledError:
            await asyncio.shield(self._discard(write, bot_id, ids))
            raise

        logger.info("conversation_saved", bot_id=bot_id, turns=len(turns))
        return turns

    async def _bot_exists(self, bot_id: str) -> bool:
        try:
            return await Bot.get(bot_id) is not None
        except PyMongoError as e:
            raise PersistenceError(f"Could not verify bot {bot_id}: {e}") from e

    async def _write(self, bot_id: str, turns: List[ConversationTurn], ids: List[PydanticObjectId]):
        try:
            result = await ConversationTurn.insert_many(turns, ordered=True)
        except BulkWriteError as e:
            inserted = e.details.get("nInserted", 0)
            logger.error("conversation_partial_write", bot_id=bot_id, inserted=inserted)
            if inserted:
                await self._rollback(ids)
            raise PersistenceError(f"Failed to save conversation: {inserted} of 2 turns written") from e
        except PyMongoError as e:
            logger.error("conversation_write_error", bot_id=bot_id, error=str(e))
            raise PersistenceError(f"Failed to save conversation: {e}") from e

        inserted_ids = list(getattr(result, "inserted_ids", []) or [])
        if len(inserted_ids) != len(turns):
            logger.error("conversation_partial_write", bot_id=bot_id, inserted=len(inserted_ids))
            if inserted_ids:
                await self._rollback(ids)
            raise PersistenceError(f"Failed to save conversation: {len(inserted_ids)} of 2 turns written")

        # The bot may have been deleted, and its turns cascaded, while the insert ran
        try:
            exists = await self._bot_exists(bot_id)
        except PersistenceError:
            await self._rollback(ids)
            raise
        if not exists:
            logger.warning("conversation_bot_deleted", bot_id=bot_id)
            await self._rollback(ids)
            raise PersistenceError(f"Bot {bot_id} was deleted while saving")

    async def _discard(self, write: asyncio.Future, bot_id: str, ids: List[PydanticObjectId]):
        try:
            await write
        except PersistenceError as e:
            logger.warning("conversation_write_abandoned", bot_id=bot_id, error=str(e))
        await self._rollback(ids)
        logger.info("conversation_write_cancelled", bot_id=bot_id)

    async def _rollback(self, ids: List[PydanticObjectId]):
        try:
            await ConversationTurn.find({"_id": {"$in": ids}}).delete()
        except PyMongoError as e:
            logger.error("conversation_rollback_failed", error=str(e))

    async def list_turns(self, bot_id: str, limit: Optional[int] = None) -> List[ConversationTurn]:
        """Turns of a bot, oldest first. With `limit`, only the most recent ones."""
        if limit:
            recent = await ConversationTurn.find(
                ConversationTurn.bot_id == bot_id
            ).sort([("created_at", -1), ("_id", -1)]).limit(limit).to_list()
            return list(reversed(recent))
        return await ConversationTurn.find(
            ConversationTurn.bot_id == bot_id
        ).sort([("created_at", 1), ("_id", 1)]).to_list()

    async def delete_for_bot(self, bot_id: str) -> int:
        result = await ConversationTurn.find(ConversationTurn.bot_id == bot_id).delete()
        deleted = getattr(result, "deleted_count", 0) or 0
        logger.info("conversation_deleted", bot_id=bot_id, turns=deleted)
        return deleted


conversation_store = ConversationStore()
