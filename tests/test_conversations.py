"""
Unit tests for the conversation store and bot service.
"""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pymongo.errors import BulkWriteError, ServerSelectionTimeoutError

from app.core.errors import PersistenceError
from app.services.bots import BotService
from app.services.conversations import ConversationStore

from conftest import InMemoryConversationStore, make_bot

BOT_ID = "65a1b2c3d4e5f60718293a4b"


def turn_model(inserted=2, insert_error=None):
    model = MagicMock(side_effect=lambda **kwargs: SimpleNamespace(**kwargs))
    if insert_error is not None:
        model.insert_many = AsyncMock(side_effect=insert_error)
    else:
        model.insert_many = AsyncMock(return_value=SimpleNamespace(inserted_ids=list(range(inserted))))
    model.find.return_value.delete = AsyncMock()
    return model


def bot_model(exists=True):
    model = MagicMock()
    model.get = AsyncMock(return_value=SimpleNamespace(id=BOT_ID) if exists else None)
    return model


class TestAppendTurn:
    @pytest.mark.asyncio
    async def test_writes_user_then_assistant_in_one_insert(self):
        turns_cls = turn_model()
        with patch("app.services.conversations.ConversationTurn", turns_cls), \
                patch("app.services.conversations.Bot", bot_model()):
            turns = await ConversationStore().append_turn(BOT_ID, "Hi", "Hello!")

        assert [t.role for t in turns] == ["user", "assistant"]
        assert [t.content for t in turns] == ["Hi", "Hello!"]
        assert {t.bot_id for t in turns} == {BOT_ID}
        turns_cls.insert_many.assert_awaited_once()
        assert turns_cls.insert_many.await_args.args[0] == turns
        assert turns_cls.insert_many.await_args.kwargs["ordered"] is True

    @pytest.mark.asyncio
    async def test_missing_bot(self):
        turns_cls = turn_model()
        with patch("app.services.conversations.ConversationTurn", turns_cls), \
                patch("app.services.conversations.Bot", bot_model(exists=False)):
            with pytest.raises(PersistenceError):
                await ConversationStore().append_turn(BOT_ID, "Hi", "Hello!")

        turns_cls.insert_many.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_partial_bulk_write_is_rolled_back(self):
        error = BulkWriteError({"nInserted": 1, "writeErrors": [{"index": 1, "code": 11000, "errmsg": "dup"}]})
        turns_cls = turn_model(insert_error=error)
        with patch("app.services.conversations.ConversationTurn", turns_cls), \
                patch("app.services.conversations.Bot", bot_model()):
            with pytest.raises(PersistenceError, match="1 of 2"):
                await ConversationStore().append_turn(BOT_ID, "Hi", "Hello!")

        query = turns_cls.find.call_args.args[0]
        assert len(query["_id"]["$in"]) == 2
        turns_cls.find.return_value.delete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_short_insert_result_is_rolled_back(self):
        turns_cls = turn_model(inserted=1)
        with patch("app.services.conversations.ConversationTurn", turns_cls), \
                patch("app.services.conversations.Bot", bot_model()):
            with pytest.raises(PersistenceError):
                await ConversationStore().append_turn(BOT_ID, "Hi", "Hello!")

        turns_cls.find.return_value.delete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_database_unavailable(self):
        turns_cls = turn_model(insert_error=ServerSelectionTimeoutError("no servers"))
        with patch("app.services.conversations.ConversationTurn", turns_cls), \
                patch("app.services.conversations.Bot", bot_model()):
            with pytest.raises(PersistenceError):
                await ConversationStore().append_turn(BOT_ID, "Hi", "Hello!")

        turns_cls.find.assert_not_called()

    @pytest.mark.asyncio
    async def test_bot_deleted_during_insert_leaves_no_turns(self):
        state = {"deleted": False}
        turns_cls = turn_model()

        async def insert_many(turns, ordered=True):
            # The bot and its conversation are deleted while the write is in flight
            state["deleted"] = True
            return SimpleNamespace(inserted_ids=[t.id for t in turns])

        turns_cls.insert_many = AsyncMock(side_effect=insert_many)
        bots = MagicMock()
        bots.get = AsyncMock(side_effect=lambda bot_id: None if state["deleted"] else SimpleNamespace(id=bot_id))

        with patch("app.services.conversations.ConversationTurn", turns_cls), \
                patch("app.services.conversations.Bot", bots):
            with pytest.raises(PersistenceError, match="deleted"):
                await ConversationStore().append_turn(BOT_ID, "Hi", "Hello!")

        assert bots.get.await_count == 2
        query = turns_cls.find.call_args.args[0]
        assert len(query["_id"]["$in"]) == 2
        turns_cls.find.return_value.delete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_timed_out_write_is_completed_then_rolled_back(self):
        order = []
        turns_cls = turn_model()

        async def slow_insert(turns, ordered=True):
            await asyncio.sleep(0.05)
            order.append("insert")
            return SimpleNamespace(inserted_ids=[t.id for t in turns])

        turns_cls.insert_many = AsyncMock(side_effect=slow_insert)
        turns_cls.find.return_value.delete = AsyncMock(side_effect=lambda: order.append("rollback"))

        with patch("app.services.conversations.ConversationTurn", turns_cls), \
                patch("app.services.conversations.Bot", bot_model()):
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(ConversationStore().append_turn(BOT_ID, "Hi", "Hello!"), timeout=0.01)

        assert order == ["insert", "rollback"]
        query = turns_cls.find.call_args.args[0]
        assert len(query["_id"]["$in"]) == 2


class TestListAndDelete:
    @pytest.mark.asyncio
    async def test_list_is_ascending(self):
        turns_cls = MagicMock()
        rows = [SimpleNamespace(content="a"), SimpleNamespace(content="b")]
        turns_cls.find.return_value.sort.return_value.to_list = AsyncMock(return_value=rows)
        with patch("app.services.conversations.ConversationTurn", turns_cls):
            result = await ConversationStore().list_turns(BOT_ID)

        assert result == rows
        turns_cls.find.return_value.sort.assert_called_once_with([("created_at", 1), ("_id", 1)])

    @pytest.mark.asyncio
    async def test_list_with_limit_returns_latest_oldest_first(self):
        turns_cls = MagicMock()
        newest_first = [SimpleNamespace(content="d"), SimpleNamespace(content="c")]
        turns_cls.find.return_value.sort.return_value.limit.return_value.to_list = AsyncMock(return_value=newest_first)
        with patch("app.services.conversations.ConversationTurn", turns_cls):
            result = await ConversationStore().list_turns(BOT_ID, limit=2)

        assert [r.content for r in result] == ["c", "d"]

    @pytest.mark.asyncio
    async def test_delete_for_bot(self):
        turns_cls = MagicMock()
        turns_cls.find.return_value.delete = AsyncMock(return_value=SimpleNamespace(deleted_count=4))
        with patch("app.services.conversations.ConversationTurn", turns_cls):
            assert await ConversationStore().delete_for_bot(BOT_ID) == 4


class TestBotService:
    @pytest.mark.asyncio
    async def test_delete_cascades_to_conversation(self):
        store = InMemoryConversationStore()
        await store.append_turn(BOT_ID, "Hi", "Hello!")
        await store.append_turn("65a1b2c3d4e5f60718293a4c", "keep", "me")
        bot = make_bot(bot_id=BOT_ID, user_id="user-1")
        bot.delete = AsyncMock()
        bots = MagicMock()
        bots.get = AsyncMock(return_value=bot)

        with patch("app.services.bots.Bot", bots):
            deleted = await BotService(conversations=store).delete_bot("user-1", BOT_ID)

        assert deleted
        bot.delete.assert_awaited_once()
        assert [r.bot_id for r in store.rows] == ["65a1b2c3d4e5f60718293a4c"] * 2

    @pytest.mark.asyncio
    async def test_turns_deleted_before_bot(self):
        order = []
        store = MagicMock()
        store.delete_for_bot = AsyncMock(side_effect=lambda bot_id: order.append("turns"))
        bot = make_bot(bot_id=BOT_ID)
        bot.delete = AsyncMock(side_effect=lambda: order.append("bot"))
        bots = MagicMock()
        bots.get = AsyncMock(return_value=bot)

        with patch("app.services.bots.Bot", bots):
            await BotService(conversations=store).delete_bot("user-1", BOT_ID)

        assert order == ["turns", "bot"]

    @pytest.mark.asyncio
    async def test_other_users_bot_is_invisible(self):
        store = MagicMock()
        store.delete_for_bot = AsyncMock()
        bot = make_bot(bot_id=BOT_ID, user_id="someone-else")
        bot.delete = AsyncMock()
        bots = MagicMock()
        bots.get = AsyncMock(return_value=bot)

        with patch("app.services.bots.Bot", bots):
            service = BotService(conversations=store)
            assert await service.get_bot("user-1", BOT_ID) is None
            assert await service.delete_bot("user-1", BOT_ID) is False

        store.delete_for_bot.assert_not_awaited()
        bot.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_id(self):
        bots = MagicMock()
        bots.get = AsyncMock()
        with patch("app.services.bots.Bot", bots):
            assert await BotService(conversations=MagicMock()).get_bot("user-1", "not-an-id") is None
        bots.get.assert_not_awaited()
