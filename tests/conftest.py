import os
from datetime import datetime
from types import SimpleNamespace
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

# Settings are read at import time; keep tests away from real credentials.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DEEPGRAM_API_KEY", "test-deepgram-key")
os.environ.setdefault("GROQ_API_KEY", "test-groq-key")

import pytest

from app.models.voice import SynthesizedSpeech
from app.services.voicebot import VoiceTurnOrchestrator


class InMemoryConversationStore:
    """Conversation store double that keeps rows in a list."""

    def __init__(self):
        self.rows: List[SimpleNamespace] = []
        self.fail_with: Optional[Exception] = None
        self.append_calls = 0

    async def append_turn(self, bot_id, user_text, assistant_text):
        self.append_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        now = datetime.utcnow()
        turns = [
            SimpleNamespace(id=f"turn-{len(self.rows)}", bot_id=bot_id, role="user", content=user_text, created_at=now),
            SimpleNamespace(id=f"turn-{len(self.rows) + 1}", bot_id=bot_id, role="assistant", content=assistant_text, created_at=now),
        ]
        self.rows.extend(turns)
        return turns

    async def list_turns(self, bot_id, limit=None):
        rows = [r for r in self.rows if r.bot_id == bot_id]
        return rows[-limit:] if limit else rows

    async def delete_for_bot(self, bot_id):
        before = len(self.rows)
        self.rows = [r for r in self.rows if r.bot_id != bot_id]
        return before - len(self.rows)


def make_bot(bot_id="65a1b2c3d4e5f60718293a4b", user_id="user-1", system_prompt="You are a geography tutor.", voice_id="nova"):
    return SimpleNamespace(
        id=bot_id,
        user_id=user_id,
        name="Tutor",
        system_prompt=system_prompt,
        voice_id=voice_id,
        created_at=datetime(2026, 1, 1, 12, 0, 0),
    )


@pytest.fixture
def bot():
    return make_bot()


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def transcriber():
    fake = MagicMock()
    fake.transcribe = AsyncMock(return_value="What is the capital of France?")
    return fake


@pytest.fixture
def generator():
    fake = MagicMock()
    fake.generate = AsyncMock(return_value="The capital of France is Paris.")
    return fake


@pytest.fixture
def synthesizer():
    async def synthesize(text, voice_selector=None):
        return SynthesizedSpeech(audio=b"ID3\x04fake-mp3-bytes", text=text, voice_model="aura-hera-en")

    fake = MagicMock()
    fake.synthesize = AsyncMock(side_effect=synthesize)
    return fake


@pytest.fixture
def orchestrator(transcriber, generator, synthesizer, store):
    return VoiceTurnOrchestrator(
        transcriber=transcriber,
        generator=generator,
        synthesizer=synthesizer,
        store=store,
        stage_timeout=1.0,
        context_turns=0,
    )
