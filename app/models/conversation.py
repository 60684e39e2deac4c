"""
Conversation models
Append-only turn records for a bot's transcript.
"""
from datetime import datetime
from typing import Literal

from beanie import Document
from pydantic import Field


class ConversationTurn(Document):
    bot_id: str
    role: Literal["user", "assistant"]
    content: str
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "conversations"
        indexes = ["bot_id", "created_at"]
