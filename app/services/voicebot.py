"""
Voicebot service
Runs one voice turn: STT -> LangChain(ChatGroq) -> Deepgram TTS -> conversation store.

Each stage either hands its output to the next one or ends the turn in
FAILED with a typed error; `run` never raises for a stage failure.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from pymongo.errors import PyMongoError

from app.config import settings
from app.core.errors import (
    GenerationError,
    NoSpeechDetected,
    PersistenceError,
    SynthesisError,
    TranscriptionError,
    TurnCancelled,
    VoiceTurnError,
)
from app.core.logging import get_logger
from app.models.bot import Bot
from app.models.voice import AudioClip, TurnState, VoiceTurnResult
from app.services.conversations import ConversationStore, conversation_store
from app.services.generation import ResponseGenerator, response_generator
from app.services.synthesis import DeepgramSynthesizer
from app.services.transcription import get_transcriber

logger = get_logger(__name__)

CancelProbe = Callable[[], Awaitable[bool]]


class VoiceTurnOrchestrator:
    def __init__(
        self,
        transcriber=None,
        generator: Optional[ResponseGenerator] = None,
        synthesizer: Optional[DeepgramSynthesizer] = None,
        store: Optional[ConversationStore] = None,
        stage_timeout: Optional[float] = None,
        context_turns: Optional[int] = None,
    ):
        self.transcriber = transcriber or get_transcriber()
        self.generator = generator or response_generator
        self.synthesizer = synthesizer or DeepgramSynthesizer()
        self.store = store or conversation_store
        self.stage_timeout = stage_timeout or settings.STAGE_TIMEOUT_SECONDS
        self.context_turns = settings.CONVERSATION_CONTEXT_TURNS if context_turns is None else context_turns

    async def _stage(self, awaitable: Awaitable, error_cls):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.stage_timeout)
        except asyncio.TimeoutError as e:
            raise error_cls(f"{error_cls.stage} timed out after {self.stage_timeout}s") from e

    @staticmethod
    def _advance(result: VoiceTurnResult, state: TurnState, bot_id: str):
        result.state = state
        result.history.append(state)
        logger.debug("voice_turn_state", bot_id=bot_id, state=state.value)

    @staticmethod
    async def _check_cancelled(is_cancelled: Optional[CancelProbe]):
        if is_cancelled is not None and await is_cancelled():
            raise TurnCancelled("Turn abandoned by the caller")

    async def run(
        self,
        bot: Bot,
        clip: AudioClip,
        is_cancelled: Optional[CancelProbe] = None,
    ) -> VoiceTurnResult:
        bot_id = str(bot.id)
        result = VoiceTurnResult()
        result.history.append(TurnState.IDLE)

        try:
            self._advance(result, TurnState.TRANSCRIBING, bot_id)
            await self._check_cancelled(is_cancelled)
            transcript = await self._stage(
                self.transcriber.transcribe(clip.data, clip.content_type), TranscriptionError
            )
            transcript = (transcript or "").strip()
            if not transcript:
                raise NoSpeechDetected()
            result.transcript = transcript

            await self._check_cancelled(is_cancelled)
            self._advance(result, TurnState.GENERATING, bot_id)
            history = []
            if self.context_turns > 0:
                try:
                    history = await self._stage(
                        self.store.list_turns(bot_id, limit=self.context_turns), GenerationError
                    )
                except PyMongoError as e:
                    raise GenerationError(f"Could not load conversation context: {e}") from e
            result.response_text = await self._stage(
                self.generator.generate(transcript, bot.system_prompt, history), GenerationError
            )

            await self._check_cancelled(is_cancelled)
            self._advance(result, TurnState.SYNTHESIZING, bot_id)
            result.speech = await self._stage(
                self.synthesizer.synthesize(result.response_text, bot.voice_id), SynthesisError
            )

            await self._check_cancelled(is_cancelled)
            self._advance(result, TurnState.PERSISTING, bot_id)
            turns = await self._stage(
                self.store.append_turn(bot_id, transcript, result.response_text), PersistenceError
            )
            result.turn_ids = [str(turn.id) for turn in turns]

        except VoiceTurnError as e:
            result.failed_stage = result.state
            result.error = e
            self._advance(result, TurnState.FAILED, bot_id)
            if isinstance(e, NoSpeechDetected):
                logger.info("voice_turn_no_speech", bot_id=bot_id, clip_size=len(clip))
            elif isinstance(e, TurnCancelled):
                logger.info("voice_turn_cancelled", bot_id=bot_id, stage=result.failed_stage.value)
            else:
                logger.error(
                    "voice_turn_failed",
                    bot_id=bot_id,
                    stage=result.failed_stage.value,
                    status=e.status_code,
                    error=str(e),
                )
            return result

        except asyncio.CancelledError:
            logger.info("voice_turn_cancelled", bot_id=bot_id, stage=result.state.value)
            raise

        self._advance(result, TurnState.COMPLETE, bot_id)
        logger.info(
            "voice_turn_complete",
            bot_id=bot_id,
            transcript_length=len(result.transcript),
            response_length=len(result.response_text),
            audio_size=len(result.speech.audio),
        )
        return result


_orchestrator: Optional[VoiceTurnOrchestrator] = None


def get_orchestrator() -> VoiceTurnOrchestrator:
    """Shared orchestrator, built on first use."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = VoiceTurnOrchestrator()
    return _orchestrator
