"""
Bot Model
Voice-chat bot definitions owned by a user
"""
from datetime import datetime
from enum import Enum

from beanie import Document
from pydantic import BaseModel, Field, field_validator


class VoiceSelector(str, Enum):
    ALLOY = "alloy"
    ECHO = "echo"
    FABLE = "fable"
    ONYX = "onyx"
    NOVA = "nova"
    SHIMMER = "shimmer"


VOICE_OPTIONS = [
    {"value": voice.value, "label": voice.value.capitalize()}
    for voice in VoiceSelector
]


class Bot(Document):
    user_id: str
    name: str
    system_prompt: str = ""
    voice_id: str = VoiceSelector.ALLOY.value
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "bots"
        indexes = ["user_id", "created_at"]


class BotCreate(BaseModel):
    name: str
    system_prompt: str = ""
    voice_id: VoiceSelector

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Bot name is required")
        return v
