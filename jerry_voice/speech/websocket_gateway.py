"""
Browser-bridged speech gateway

The dashboard page owns the Web Speech APIs; it connects to /speech and relays
recognition callbacks and playback completion as JSON messages. This gateway
turns those messages into the SpeechGateway contract.
"""

import asyncio
import uuid
from typing import Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect
from loguru import logger

from jerry_voice.speech.base import SpeakOptions, SpeechGateway, SynthesisError, UnsupportedError

RECOGNITION_MESSAGES = ("recognition_started", "result", "recognition_error", "recognition_end")


class WebSocketSpeechGateway(SpeechGateway):
    def __init__(self, lang: str = "en-US"):
        super().__init__()
        self.lang = lang
        self._ws: Optional[WebSocket] = None
        self._can_recognize = False
        self._can_synthesize = False
        self._pending_speech: Dict[str, asyncio.Future] = {}
        self._stream_id: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    @property
    def supports_recognition(self) -> bool:
        return self._ws is not None and self._can_recognize

    @property
    def supports_synthesis(self) -> bool:
        return self._ws is not None and self._can_synthesize

    async def _send(self, message: dict):
        if self._ws is None:
            raise UnsupportedError("No speech client connected")
        await self._ws.send_json(message)

    async def _open_stream(self):
        self._stream_id = self._handle.id
        await self._send({"type": "start_recognition", "stream": self._stream_id, "lang": self.lang})

    async def _close_stream(self):
        if self._ws is not None:
            await self._send({"type": "stop_recognition", "stream": self._stream_id})

    async def _play(self, text: str, options: SpeakOptions):
        utterance_id = uuid.uuid4().hex[:12]
        future = asyncio.get_running_loop().create_future()
        self._pending_speech[utterance_id] = future
        try:
            await self._send({
                "type": "speak",
                "id": utterance_id,
                "text": text,
                "voice": options.voice,
                "rate": options.rate,
                "pitch": options.pitch,
                "volume": options.volume,
            })
            await future
        finally:
            self._pending_speech.pop(utterance_id, None)

    async def _cancel_playback(self):
        self._resolve_pending()
        if self._ws is not None:
            await self._send({"type": "cancel_speech"})

    def _resolve_pending(self, error: Exception = None):
        for future in list(self._pending_speech.values()):
            if future.done():
                continue
            if error:
                future.set_exception(error)
            else:
                future.set_result(None)

    def _is_current_stream(self, message: dict) -> bool:
        return self._handle is not None and message.get("stream") == self._handle.id

    def _handle_message(self, message: dict):
        msg_type = message.get("type")

        if msg_type == "capabilities":
            self._can_recognize = bool(message.get("recognition"))
            self._can_synthesize = bool(message.get("synthesis"))
            logger.info(f"Speech client capabilities: recognition={self._can_recognize}, synthesis={self._can_synthesize}")
        elif msg_type in RECOGNITION_MESSAGES and not self._is_current_stream(message):
            logger.debug(f"Ignoring {msg_type} for stale stream {message.get('stream')}")
        elif msg_type == "recognition_started":
            self._platform_started()
        elif msg_type == "result":
            self._platform_result((message.get("text") or "").strip(), bool(message.get("final")))
        elif msg_type == "recognition_error":
            self._platform_error(message.get("reason") or "unknown")
        elif msg_type == "recognition_end":
            self._platform_ended()
        elif msg_type == "speech_end":
            future = self._pending_speech.get(message.get("id"))
            if future and not future.done():
                future.set_result(None)
        elif msg_type == "speech_error":
            future = self._pending_speech.get(message.get("id"))
            if future and not future.done():
                future.set_exception(SynthesisError(f"Speech synthesis error: {message.get('error')}"))
        else:
            logger.debug(f"Ignoring speech client message: {msg_type}")

    async def serve(self, websocket: WebSocket):
        """Run the receive loop for one browser connection until it disconnects"""
        if self._ws is not None:
            logger.warning("Speech client already connected - rejecting second connection")
            await websocket.close(code=1013)
            return

        await websocket.accept()
        self._ws = websocket
        logger.info("Speech client connected")
        try:
            while True:
                try:
                    message = await websocket.receive_json()
                except ValueError as e:
                    logger.warning(f"Dropping malformed speech client frame: {e}")
                    continue
                if isinstance(message, dict):
                    self._handle_message(message)
        except WebSocketDisconnect:
            logger.info("Speech client disconnected")
        finally:
            self._ws = None
            self._can_recognize = False
            self._can_synthesize = False
            if self.is_currently_listening():
                self._platform_error("client-disconnected")
                self._platform_ended()
            self._resolve_pending(SynthesisError("Speech client disconnected"))
