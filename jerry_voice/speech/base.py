"""
Speech capture/playback gateway contract

Recognition and synthesis are two independent single-slot resources: at most one
open recognition stream and at most one playing utterance per gateway.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Union

from loguru import logger


class SpeechError(Exception):
    """Base class for speech gateway errors"""


class UnsupportedError(SpeechError):
    """The host platform offers no recognition or synthesis capability"""


class AlreadyActiveError(SpeechError):
    """A recognition stream is already open on this gateway"""


class SynthesisError(SpeechError):
    """Playback of an utterance failed"""


# Recognition events, delivered in order on a RecognitionHandle

@dataclass(frozen=True)
class RecognitionStarted:
    pass


@dataclass(frozen=True)
class InterimTranscript:
    """Provisional text; replaces any previous interim text for the utterance"""
    text: str


@dataclass(frozen=True)
class FinalTranscript:
    """Committed text, emitted once per utterance"""
    text: str


@dataclass(frozen=True)
class RecognitionFault:
    reason: str


@dataclass(frozen=True)
class RecognitionEnded:
    pass


RecognitionEvent = Union[RecognitionStarted, InterimTranscript, FinalTranscript, RecognitionFault, RecognitionEnded]


@dataclass
class SpeakOptions:
    voice: str = ""
    rate: float = 0.9
    pitch: float = 1.0
    volume: float = 0.8


class RecognitionHandle:
    """One open recognition stream.

    Iterate it to receive events; iteration stops after RecognitionEnded, which is
    delivered exactly once.
    """

    def __init__(self, gateway: "SpeechGateway"):
        self.id = uuid.uuid4().hex[:12]
        self._gateway = gateway
        self._queue: asyncio.Queue = asyncio.Queue()
        self._end_emitted = False
        self._finished = False

    @property
    def ended(self) -> bool:
        return self._end_emitted

    def emit(self, event: RecognitionEvent):
        if self._end_emitted:
            return
        if isinstance(event, RecognitionEnded):
            self._end_emitted = True
        self._queue.put_nowait(event)

    async def cancel(self):
        """Close the stream; same as stop_listening() on the owning gateway"""
        if self._gateway.active_handle is self:
            await self._gateway.stop_listening()

    def __aiter__(self):
        return self

    async def __anext__(self) -> RecognitionEvent:
        if self._finished:
            raise StopAsyncIteration
        event = await self._queue.get()
        if isinstance(event, RecognitionEnded):
            self._finished = True
        return event


class SpeechGateway(ABC):
    """Wraps the platform recognizer and synthesizer.

    Subclasses implement the platform hooks and report platform callbacks through
    the _platform_* methods.
    """

    def __init__(self):
        self._handle: Optional[RecognitionHandle] = None
        self._speaking = False
        self._speech_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Platform hooks
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def supports_recognition(self) -> bool:
        pass

    @property
    @abstractmethod
    def supports_synthesis(self) -> bool:
        pass

    @abstractmethod
    async def _open_stream(self):
        """Ask the platform to begin continuous recognition"""

    @abstractmethod
    async def _close_stream(self):
        """Ask the platform to halt recognition"""

    @abstractmethod
    async def _play(self, text: str, options: SpeakOptions):
        """Play one utterance; return when playback completes"""

    @abstractmethod
    async def _cancel_playback(self):
        """Cancel whatever the platform is playing"""

    # ------------------------------------------------------------------
    # Platform callbacks
    # ------------------------------------------------------------------

    def _platform_started(self):
        if self._handle:
            self._handle.emit(RecognitionStarted())

    def _platform_result(self, text: str, is_final: bool):
        if not self._handle or not text:
            return
        if is_final:
            self._handle.emit(FinalTranscript(text))
        else:
            self._handle.emit(InterimTranscript(text))

    def _platform_error(self, reason: str):
        if self._handle:
            logger.warning(f"Speech recognition error: {reason}")
            self._handle.emit(RecognitionFault(reason))

    def _platform_ended(self):
        handle, self._handle = self._handle, None
        if handle:
            handle.emit(RecognitionEnded())

    # ------------------------------------------------------------------
    # Recognition
    # ------------------------------------------------------------------

    @property
    def active_handle(self) -> Optional[RecognitionHandle]:
        return self._handle

    async def start_listening(self) -> RecognitionHandle:
        if not self.supports_recognition:
            raise UnsupportedError("Speech recognition not supported")
        if self._handle is not None:
            raise AlreadyActiveError("Already listening")

        handle = RecognitionHandle(self)
        self._handle = handle
        try:
            await self._open_stream()
        except Exception:
            self._handle = None
            raise
        return handle

    async def stop_listening(self):
        if self._handle is None:
            return
        self._platform_ended()
        try:
            await self._close_stream()
        except Exception as e:
            logger.warning(f"Error halting recognition: {e}")

    def is_currently_listening(self) -> bool:
        return self._handle is not None

    # ------------------------------------------------------------------
    # Synthesis
    # ------------------------------------------------------------------

    async def speak(self, text: str, options: Optional[SpeakOptions] = None):
        if not text or not text.strip():
            return
        if not self.supports_synthesis:
            raise UnsupportedError("Speech synthesis not supported")

        # Cancel-then-start: never two utterances at once
        await self.stop_speaking()
        async with self._speech_lock:
            self._speaking = True
            try:
                await self._play(text, options or SpeakOptions())
            finally:
                self._speaking = False

    async def stop_speaking(self):
        if not self._speaking:
            return
        try:
            await self._cancel_playback()
        except Exception as e:
            logger.warning(f"Error cancelling speech: {e}")

    def is_currently_speaking(self) -> bool:
        return self._speaking
