"""
Bot service
Create, list, fetch and delete bots scoped to their owner.
"""
from typing import List, Optional

from beanie import PydanticObjectId

from app.core.logging import get_logger
from app.models.bot import Bot, BotCreate
from app.services.conversations import ConversationStore, conversation_store

logger = get_logger(__name__)


class BotService:
    def __init__(self, conversations: ConversationStore = conversation_store):
        self.conversations = conversations

    async def create_bot(self, user_id: str, data: BotCreate) -> Bot:
        bot = Bot(
            user_id=user_id,
            name=data.name,
            system_prompt=data.system_prompt,
            voice_id=data.voice_id.value,
        )
        await bot.insert()
        logger.info("bot_created", bot_id=str(bot.id), user_id=user_id, voice=bot.voice_id)
        return bot

    async def list_bots(self, user_id: str) -> List[Bot]:
        return await Bot.find(Bot.user_id == user_id).sort("-created_at").to_list()

    async def get_bot(self, user_id: str, bot_id: str) -> Optional[Bot]:
        if not PydanticObjectId.is_valid(bot_id):
            return None
        bot = await Bot.get(bot_id)
        if not bot or bot.user_id != user_id:
            return None
        return bot

    async def delete_bot(self, user_id: str, bot_id: str) -> bool:
        bot = await self.get_bot(user_id, bot_id)
        if not bot:
            return False
        # Turns first, so none outlive their bot
        await self.conversations.delete_for_bot(str(bot.id))
        await bot.delete()
        logger.info("bot_deleted", bot_id=bot_id, user_id=user_id)
        return True


bot_service = BotService()
