"""
Voice Routes
Talk to a bot: upload a finished clip, or stream a recording over a WebSocket
"""
import asyncio
import base64
import json
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse

from app.config import settings
from app.core.errors import EchoBaseError, RecordingInProgressError, ResourceAccessError, TurnCancelled
from app.core.logging import get_logger
from app.models.user import User
from app.models.voice import AudioClip, VoiceTurnResult
from app.api.routes.auth import get_current_user, user_from_token
from app.services.bots import bot_service
from app.services.recording import RecordingController, RecordingSession, microphones
from app.services.voicebot import VoiceTurnOrchestrator, get_orchestrator


router = APIRouter()
logger = get_logger(__name__)


def turn_payload(result: VoiceTurnResult) -> dict:
    speech = result.speech if result.playable else None
    return {
        "state": result.state.value,
        "transcript": result.transcript,
        "reply": result.response_text,
        "audio_base64": base64.b64encode(speech.audio).decode("utf-8") if speech else None,
        "audio_format": speech.audio_format if speech else None,
        "persisted": result.persisted,
        "failed_stage": result.failed_stage.value if result.failed_stage else None,
        "error": result.error.user_message if result.error else None,
    }


def turn_status_code(result: VoiceTurnResult) -> int:
    if result.playable:
        return 200
    if result.no_speech:
        return 422
    if isinstance(result.error, TurnCancelled):
        return 400
    return 502


@router.post("/{bot_id}/turn")
async def voice_turn(
    bot_id: str,
    request: Request,
    audio: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    orchestrator: VoiceTurnOrchestrator = Depends(get_orchestrator),
):
    """Run one voice turn on an uploaded clip"""
    user_id = str(current_user.id)
    bot = await bot_service.get_bot(user_id, bot_id)
    if not bot:
        raise HTTPException(status_code=404, detail="Bot not found")

    audio_bytes = await audio.read()
    if not audio_bytes:
        raise HTTPException(status_code=400, detail="Audio file is empty")
    if len(audio_bytes) > settings.MAX_CLIP_BYTES:
        raise HTTPException(status_code=413, detail="Audio file is too large")

    clip = AudioClip(data=audio_bytes, content_type=audio.content_type or "audio/webm")
    try:
        with microphones.hold(user_id):
            result = await orchestrator.run(bot, clip, is_cancelled=request.is_disconnected)
    except RecordingInProgressError as e:
        raise HTTPException(status_code=409, detail=e.user_message)

    return JSONResponse(status_code=turn_status_code(result), content=turn_payload(result))


async def _send_error(websocket: WebSocket, error: EchoBaseError):
    await websocket.send_json({
        "type": "error",
        "code": type(error).__name__,
        "message": error.user_message,
    })


@router.websocket("/{bot_id}/talk")
async def talk(
    websocket: WebSocket,
    bot_id: str,
    token: str = Query(...),
    orchestrator: VoiceTurnOrchestrator = Depends(get_orchestrator),
):
    """
    Streaming recording session.

    Text frames carry JSON commands (start, stop, cancel, error); binary
    frames carry audio fragments of the active recording.
    """
    user = await user_from_token(token)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    user_id = str(user.id)
    bot = await bot_service.get_bot(user_id, bot_id)
    if not bot:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()

    async def handle_clip(session: RecordingSession, clip: AudioClip):
        try:
            await websocket.send_json({"type": "processing", "session_id": session.id, "clip_size": len(clip)})
            result = await orchestrator.run(bot, clip)
            await websocket.send_json({"type": "turn", "status": turn_status_code(result), **turn_payload(result)})
        except WebSocketDisconnect:
            logger.info("talk_client_gone", bot_id=bot_id, session_id=session.id)
        except Exception as e:
            logger.exception("talk_turn_crashed", bot_id=bot_id, session_id=session.id, error=str(e))
            try:
                await websocket.send_json({"type": "error", "code": "TurnFailed", "message": "Something went wrong. Please try again."})
            except (WebSocketDisconnect, RuntimeError):
                logger.info("talk_client_gone", bot_id=bot_id, session_id=session.id)

    controller = RecordingController(user_id, handle_clip)
    turn_task: Optional[asyncio.Task] = None

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            if message.get("bytes") is not None:
                try:
                    controller.feed(message["bytes"])
                except EchoBaseError as e:
                    await _send_error(websocket, e)
                continue

            try:
                command = json.loads(message.get("text") or "")
                kind = command.get("type")
            except (ValueError, AttributeError):
                await websocket.send_json({"type": "error", "code": "InvalidMessage", "message": "Invalid message"})
                continue

            try:
                if kind == "start":
                    session = controller.start(str(bot.id), command.get("content_type") or "audio/webm")
                    await websocket.send_json({"type": "recording", "session_id": session.id})
                elif kind == "stop":
                    session, clip = controller.finish()
                    turn_task = asyncio.create_task(controller.process(session, clip))
                elif kind == "cancel":
                    controller.release()
                    await websocket.send_json({"type": "cancelled"})
                elif kind == "error":
                    # The client could not open its microphone
                    controller.release()
                    raise ResourceAccessError(f"Client capture failed: {command.get('reason', 'unknown')}")
                else:
                    await websocket.send_json({"type": "error", "code": "InvalidMessage", "message": f"Unknown command: {kind}"})
            except EchoBaseError as e:
                logger.warning("talk_command_rejected", bot_id=bot_id, command=kind, error=str(e))
                await _send_error(websocket, e)
    except WebSocketDisconnect:
        pass
    finally:
        controller.release()
        if turn_task is not None:
            if not turn_task.done():
                turn_task.cancel()
            try:
                await turn_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.exception("talk_turn_task_failed", bot_id=bot_id, error=str(e))
        logger.info("talk_closed", bot_id=bot_id, user_id=user_id)
