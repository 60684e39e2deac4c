"""
Bot Routes
Create, list and delete bots; read their transcripts
"""
from fastapi import APIRouter, HTTPException, Depends, status

from app.models.bot import Bot, BotCreate, VOICE_OPTIONS
from app.models.conversation import ConversationTurn
from app.models.user import User
from app.api.routes.auth import get_current_user
from app.services.bots import bot_service
from app.services.conversations import conversation_store


router = APIRouter()


def serialize_bot(bot: Bot) -> dict:
    return {
        "id": str(bot.id),
        "name": bot.name,
        "system_prompt": bot.system_prompt,
        "voice_id": bot.voice_id,
        "created_at": bot.created_at.isoformat(),
    }


def serialize_turn(turn: ConversationTurn) -> dict:
    return {
        "id": str(turn.id),
        "bot_id": turn.bot_id,
        "role": turn.role,
        "content": turn.content,
        "created_at": turn.created_at.isoformat(),
    }


@router.get("/voices")
async def list_voices():
    """Voices a bot can be created with"""
    return {"voices": VOICE_OPTIONS}


@router.get("/")
async def list_bots(current_user: User = Depends(get_current_user)):
    """Current user's bots, newest first"""
    bots = await bot_service.list_bots(str(current_user.id))
    return {"bots": [serialize_bot(b) for b in bots]}


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_bot(
    request: BotCreate,
    current_user: User = Depends(get_current_user)
):
    bot = await bot_service.create_bot(str(current_user.id), request)
    return serialize_bot(bot)


@router.get("/{bot_id}")
async def get_bot(
    bot_id: str,
    current_user: User = Depends(get_current_user)
):
    bot = await bot_service.get_bot(str(current_user.id), bot_id)
    if not bot:
        raise HTTPException(status_code=404, detail="Bot not found")
    return serialize_bot(bot)


@router.delete("/{bot_id}")
async def delete_bot(
    bot_id: str,
    current_user: User = Depends(get_current_user)
):
    """Delete a bot together with its conversation"""
    deleted = await bot_service.delete_bot(str(current_user.id), bot_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Bot not found")
    return {"message": "Bot deleted successfully"}


@router.get("/{bot_id}/conversations")
async def list_conversations(
    bot_id: str,
    current_user: User = Depends(get_current_user)
):
    """Transcript of a bot, oldest turn first"""
    bot = await bot_service.get_bot(str(current_user.id), bot_id)
    if not bot:
        raise HTTPException(status_code=404, detail="Bot not found")

    turns = await conversation_store.list_turns(str(bot.id))
    return {
        "bot_id": str(bot.id),
        "messages": [serialize_turn(t) for t in turns],
    }
