"""
Recording controller
One recording session per user at a time; fragments are buffered and
finalized into a single clip that is handed to the turn handler once.
"""
import uuid
from contextlib import contextmanager
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from app.config import settings
from app.core.errors import RecordingError, RecordingInProgressError
from app.core.logging import get_logger
from app.models.voice import AudioClip

logger = get_logger(__name__)


class MicrophoneRegistry:
    """Exclusive capture lease per user, shared by every bot view."""

    def __init__(self):
        self._holders: Dict[str, str] = {}

    def acquire(self, user_id: str, holder: str):
        current = self._holders.get(user_id)
        if current is not None and current != holder:
            raise RecordingInProgressError()
        self._holders[user_id] = holder

    def release(self, user_id: str, holder: str):
        if self._holders.get(user_id) == holder:
            del self._holders[user_id]

    def is_held(self, user_id: str) -> bool:
        return user_id in self._holders

    @contextmanager
    def hold(self, user_id: str, holder: Optional[str] = None):
        holder = holder or uuid.uuid4().hex
        self.acquire(user_id, holder)
        try:
            yield holder
        finally:
            self.release(user_id, holder)


microphones = MicrophoneRegistry()


class RecordingSession:
    def __init__(self, user_id: str, bot_id: str, content_type: str = "audio/webm", max_bytes: Optional[int] = None):
        self.id = uuid.uuid4().hex
        self.user_id = user_id
        self.bot_id = bot_id
        self.content_type = content_type
        self.max_bytes = max_bytes or settings.MAX_CLIP_BYTES
        self._fragments: List[bytes] = []
        self._size = 0
        self.finalized = False

    @property
    def size(self) -> int:
        return self._size

    def append(self, fragment: bytes) -> int:
        if self.finalized:
            raise RecordingError("Recording already finalized")
        if not fragment:
            return self._size
        if self._size + len(fragment) > self.max_bytes:
            raise RecordingError(f"Recording exceeds {self.max_bytes} bytes")
        self._fragments.append(bytes(fragment))
        self._size += len(fragment)
        return self._size

    def finalize(self) -> AudioClip:
        if self.finalized:
            raise RecordingError("Recording already finalized")
        self.finalized = True
        data = b"".join(self._fragments)
        self._fragments = []
        if not data:
            raise RecordingError("No audio was captured")
        return AudioClip(data=data, content_type=self.content_type)


ClipHandler = Callable[[RecordingSession, AudioClip], Awaitable]


class RecordingController:
    """
    Owns at most one recording session.

    `stop` releases the microphone before running the turn handler and
    keeps the controller busy until the handler returns, so no second
    recording starts while a turn is in flight.
    """

    def __init__(
        self,
        user_id: str,
        on_clip: ClipHandler,
        registry: MicrophoneRegistry = microphones,
        max_bytes: Optional[int] = None,
    ):
        self.user_id = user_id
        self.on_clip = on_clip
        self.registry = registry
        self.max_bytes = max_bytes
        self.session: Optional[RecordingSession] = None
        self.busy = False

    @property
    def recording(self) -> bool:
        return self.session is not None

    def start(self, bot_id: str, content_type: str = "audio/webm") -> RecordingSession:
        if self.session is not None or self.busy:
            raise RecordingInProgressError()
        session = RecordingSession(self.user_id, bot_id, content_type, self.max_bytes)
        self.registry.acquire(self.user_id, session.id)
        self.session = session
        logger.info("recording_started", user_id=self.user_id, bot_id=bot_id, session_id=session.id)
        return session

    def feed(self, fragment: bytes) -> int:
        if self.session is None:
            raise RecordingError("No active recording")
        try:
            return self.session.append(fragment)
        except RecordingError:
            self.release()
            raise

    def finish(self) -> Tuple[RecordingSession, AudioClip]:
        """Finalize the clip and release the microphone; the controller stays busy until `process`."""
        if self.session is None:
            raise RecordingError("No active recording")
        session = self.session
        try:
            clip = session.finalize()
        finally:
            self.release()

        self.busy = True
        logger.info("recording_stopped", user_id=self.user_id, session_id=session.id, clip_size=len(clip))
        return session, clip

    async def process(self, session: RecordingSession, clip: AudioClip):
        try:
            return await self.on_clip(session, clip)
        finally:
            self.busy = False

    async def stop(self):
        """Finalize the clip, release the microphone and run the handler once."""
        session, clip = self.finish()
        return await self.process(session, clip)

    def release(self):
        """Drop the active session and its microphone lease. Idempotent."""
        session, self.session = self.session, None
        if session is not None:
            self.registry.release(self.user_id, session.id)
            logger.debug("recording_released", user_id=self.user_id, session_id=session.id)
