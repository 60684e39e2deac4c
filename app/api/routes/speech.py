"""
Speech Routes
Stand-alone transcription and voice reply endpoints
"""
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from app.core.errors import VoiceTurnError
from app.core.logging import get_logger
from app.models.user import User
from app.api.routes.auth import get_current_user
from app.services.voicebot import VoiceTurnOrchestrator, get_orchestrator


router = APIRouter()
logger = get_logger(__name__)


class VoiceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str
    system_prompt: str = Field("", alias="systemPrompt")
    voice_id: str = Field("", alias="voiceId")


@router.post("/stt")
async def speech_to_text(
    request: Request,
    current_user: User = Depends(get_current_user),
    orchestrator: VoiceTurnOrchestrator = Depends(get_orchestrator),
):
    """Transcribe a raw audio body"""
    audio = await request.body()
    if not audio:
        raise HTTPException(status_code=400, detail="Audio body is empty")

    content_type = request.headers.get("content-type") or "audio/webm"
    try:
        text = await orchestrator.transcriber.transcribe(audio, content_type)
    except VoiceTurnError as e:
        raise HTTPException(status_code=502, detail="Failed to transcribe audio") from e
    return {"text": text.strip()}


@router.post("/voice")
async def voice_reply(
    request: VoiceRequest,
    current_user: User = Depends(get_current_user),
    orchestrator: VoiceTurnOrchestrator = Depends(get_orchestrator),
):
    """
    Answer `text` with the given system prompt and speak the answer.

    The body is the audio; the reply text travels URL-encoded in X-AI-Text.
    """
    if not request.text.strip():
        raise HTTPException(status_code=400, detail="Text is required")

    try:
        reply = await orchestrator.generator.generate(request.text, request.system_prompt)
        speech = await orchestrator.synthesizer.synthesize(reply, request.voice_id)
    except VoiceTurnError as e:
        logger.error("voice_reply_failed", stage=e.stage, status=e.status_code)
        raise HTTPException(status_code=502, detail="Voice AI request failed") from e

    return Response(
        content=speech.audio,
        media_type=speech.content_type,
        headers={"X-AI-Text": quote(speech.text)},
    )
