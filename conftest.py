"""
Shared fakes for the Jerry test suite
No network, browser or database: speech, storage and Gemini are all in-memory.
"""

import asyncio
import json
from typing import Callable, Dict, List, Optional

import httpx
import pytest

from jerry_voice.core.config import PROJECT_ROOT, Config
from jerry_voice.db.call_log_store import PersistenceError
from jerry_voice.db.failed_saves import FailedSaveQueue
from jerry_voice.directory import ContactDirectory
from jerry_voice.services.call_session import CallSessionManager
from jerry_voice.services.gemini_client import GeminiClient
from jerry_voice.services.response_generator import ResponseGenerator
from jerry_voice.speech import SpeakOptions, SpeechGateway


class FakeSpeechGateway(SpeechGateway):
    """Scriptable platform: tests play the browser through say()/fault()/end()"""

    def __init__(self, recognition: bool = True, synthesis: bool = True):
        super().__init__()
        self.recognition = recognition
        self.synthesis = synthesis
        self.spoken: List[str] = []
        self.opened = 0
        self.closed = 0
        self.cancelled = 0
        self.hold_playback = False
        self._playback: Optional[asyncio.Future] = None

    @property
    def supports_recognition(self) -> bool:
        return self.recognition

    @property
    def supports_synthesis(self) -> bool:
        return self.synthesis

    async def _open_stream(self):
        self.opened += 1

    async def _close_stream(self):
        self.closed += 1

    async def _play(self, text: str, options: SpeakOptions):
        self.spoken.append(text)
        if self.hold_playback:
            self._playback = asyncio.get_running_loop().create_future()
            await self._playback

    async def _cancel_playback(self):
        self.cancelled += 1
        if self._playback and not self._playback.done():
            self._playback.set_result(None)

    # Browser side

    def started(self):
        self._platform_started()

    def say(self, text: str, final: bool = True):
        self._platform_result(text, final)

    def fault(self, reason: str):
        self._platform_error(reason)

    def end(self):
        self._platform_ended()


class InMemoryCallLogStore:
    """CallLogStore stand-in; `failing` makes writes raise PersistenceError"""

    def __init__(self):
        self.rows: Dict[str, dict] = {}
        self.evaluations: Dict[str, dict] = {}
        self.writes = 0
        self.failing = False
        self.failing_ids = set()
        self.closed = False

    async def upsert_call_log(self, record: dict):
        if self.failing or record["id"] in self.failing_ids:
            raise PersistenceError(f"database unavailable for {record['id']}")
        self.writes += 1
        existing = self.rows.get(record["id"])
        # Same guard as the ON CONFLICT ... WHERE clause in UPSERT_CALL_LOG_SQL
        if existing and (existing["status"] != "active"
                         or len(record.get("transcript") or []) < len(existing.get("transcript") or [])):
            return
        self.rows[record["id"]] = json.loads(json.dumps(record))

    async def list_call_logs(self, limit: Optional[int] = None) -> List[dict]:
        if self.failing:
            return []
        return list(reversed(list(self.rows.values())))[:limit]

    async def save_evaluation(self, student_id: str, evaluation: dict) -> bool:
        if self.failing:
            raise PersistenceError("database unavailable")
        if student_id in self.evaluations:
            return False
        self.evaluations[student_id] = evaluation
        return True

    def close(self):
        self.closed = True


def gemini_body(text: str = None, function_call: dict = None) -> dict:
    parts = []
    if text is not None:
        parts.append({"text": text})
    if function_call is not None:
        parts.append({"functionCall": function_call})
    return {"candidates": [{"content": {"parts": parts, "role": "model"}}]}


class ScriptedGemini:
    """httpx transport handler replying from a queue (or a fixed reply once empty)"""

    def __init__(self, default: str = "That sounds great. Tell me a little more about yourself?"):
        self.default = default
        self.replies: List = []
        self.requests: List[dict] = []

    def queue(self, *replies):
        self.replies.extend(replies)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            return reply
        if isinstance(reply, dict):
            return httpx.Response(200, json=reply)
        return httpx.Response(200, json=gemini_body(reply))

    @property
    def last_prompt(self) -> str:
        return self.requests[-1]["contents"][0]["parts"][0]["text"]


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0):
    """Poll until predicate() holds; fails the test on timeout"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def test_config(tmp_path) -> Config:
    return Config(
        google_api_key="test-key",
        database_url="",
        failed_saves_dir=str(tmp_path / "failed_saves"),
        contacts_file=str(PROJECT_ROOT / "data" / "contacts.json"),
        log_dir=str(tmp_path / "logs"),
        end_call_delay=0.05,
        interview_question_count=2,
        gemini_function_calling=False,
    )


@pytest.fixture
def gateway() -> FakeSpeechGateway:
    return FakeSpeechGateway()


@pytest.fixture
def store() -> InMemoryCallLogStore:
    return InMemoryCallLogStore()


@pytest.fixture
def gemini() -> ScriptedGemini:
    return ScriptedGemini()


@pytest.fixture
def backup(test_config) -> FailedSaveQueue:
    return FailedSaveQueue(test_config.failed_saves_dir)


@pytest.fixture
def responder(test_config, gemini) -> ResponseGenerator:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(gemini))
    return ResponseGenerator(GeminiClient(test_config, http_client=http_client), cfg=test_config)


@pytest.fixture
def manager(test_config, gateway, responder, store, backup) -> CallSessionManager:
    return CallSessionManager(
        speech=gateway,
        responder=responder,
        store=store,
        backup=backup,
        directory=ContactDirectory.from_file(test_config.contacts_file),
        cfg=test_config,
    )
