"""
Call session manager

Owns every live CallSession: creates it with a deterministic opener, runs the
serialized turn loop (contact utterance -> reply -> speech -> action), and
finalizes it (stop audio, duration, persist or back up, evict).

All session mutation goes through this module; action handlers get a SessionOps
facade rather than the manager's internals.
"""

import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from loguru import logger

from jerry_voice.actions import ActionRegistry
from jerry_voice.core.config import Config, config as default_config
from jerry_voice.db.call_log_store import CallLogStore
from jerry_voice.db.failed_saves import FailedSaveQueue
from jerry_voice.directory import ContactDirectory
from jerry_voice.models import (
    CallSession,
    CallStatus,
    CallType,
    ContactType,
    ConversationContext,
    StudentEvaluation,
)
from jerry_voice.services.response_generator import GeneratedReply, ResponseGenerator
from jerry_voice.speech import (
    FinalTranscript,
    InterimTranscript,
    RecognitionEnded,
    RecognitionFault,
    RecognitionHandle,
    RecognitionStarted,
    SpeakOptions,
    SpeechError,
    SpeechGateway,
)
from jerry_voice.transcript import EntryType, Speaker, TranscriptEntry

# Recognition faults the browser cannot recover from without user action
FATAL_RECOGNITION_ERRORS = {"not-allowed", "service-not-allowed", "audio-capture"}


class SessionNotFoundError(Exception):
    """No live session with the given id"""


class CallLogger:
    """Structured call lifecycle logger with visual indentation."""

    def __init__(self, call_id: str):
        self.id = call_id[-8:]

    def section(self, title: str):
        logger.info(f"[{self.id}] ══════ {title} ══════")

    def phase(self, title: str):
        logger.info(f"[{self.id}] ├─ {title}")

    def detail(self, msg: str):
        logger.info(f"[{self.id}] │  ├─ {msg}")

    def turn(self, num: int, extra: str = ""):
        suffix = f" ({extra})" if extra else ""
        logger.info(f"[{self.id}] ├─ TURN #{num}{suffix}")

    def agent(self, text: str):
        logger.info(f"[{self.id}] │  ├─ JERRY:   {text}")

    def contact(self, text: str):
        logger.info(f"[{self.id}] │  ├─ CONTACT: {text}")

    def metric(self, text: str):
        logger.info(f"[{self.id}] │  └─ {text}")

    def warn(self, msg: str):
        logger.warning(f"[{self.id}] ⚠ {msg}")

    def error(self, msg: str):
        logger.error(f"[{self.id}] ✗ {msg}")


class SessionOps:
    """Mutation operations on one session, handed to action handlers"""

    def __init__(self, manager: "CallSessionManager", session: CallSession):
        self._manager = manager
        self.session = session

    @property
    def end_call_delay(self) -> float:
        return self._manager.config.end_call_delay

    def append_note(self, text: str, entry_type: EntryType = EntryType.ACTION) -> Optional[TranscriptEntry]:
        return self._manager._append(self.session, Speaker.JERRY, text, entry_type)

    def mark_jotform_sent(self):
        self._manager._set_flag(self.session, "jotform_sent")

    def mark_teams_scheduled(self):
        self._manager._set_flag(self.session, "teams_scheduled")

    def attach_evaluation(self, evaluation: StudentEvaluation) -> bool:
        return self._manager._attach_evaluation(self.session, evaluation)

    def request_persist(self):
        self._manager._schedule_persist(self.session)

    def schedule_end(self) -> bool:
        return self._manager._schedule_end(self.session.id)


class CallSessionManager:
    def __init__(
        self,
        speech: SpeechGateway,
        responder: ResponseGenerator,
        store: CallLogStore,
        backup: FailedSaveQueue,
        directory: ContactDirectory = None,
        actions: ActionRegistry = None,
        cfg: Config = None,
    ):
        self.speech = speech
        self.responder = responder
        self.store = store
        self.backup = backup
        self.directory = directory or ContactDirectory()
        self.actions = actions or ActionRegistry()
        self.config = cfg or default_config

        self._sessions: Dict[str, CallSession] = {}
        self._logs: Dict[str, CallLogger] = {}
        self._turn_locks: Dict[str, asyncio.Lock] = {}
        self._turn_counts: Dict[str, int] = {}
        self._interim: Dict[str, str] = {}
        self._last_errors: Dict[str, str] = {}
        self._persist_tails: Dict[str, asyncio.Task] = {}
        self._end_tasks: Dict[str, asyncio.Task] = {}
        self._listen_tasks: Dict[str, asyncio.Task] = {}
        self._finalizing: set = set()
        self._listening_session: Optional[str] = None
        self._speaking_session: Optional[str] = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> Optional[CallSession]:
        return self._sessions.get(session_id)

    def active_sessions(self) -> List[CallSession]:
        return list(self._sessions.values())

    def interim_text(self, session_id: str) -> str:
        return self._interim.get(session_id, "")

    def last_error(self, session_id: str) -> Optional[str]:
        return self._last_errors.get(session_id)

    def is_listening(self, session_id: str) -> bool:
        return self._listening_session == session_id and self.speech.is_currently_listening()

    # ------------------------------------------------------------------
    # Session mutation (the only writers of CallSession fields)
    # ------------------------------------------------------------------

    def _writable(self, session: CallSession) -> bool:
        return session.is_active and session.id not in self._finalizing

    def _append(self, session: CallSession, speaker: Speaker, text: str,
                entry_type: EntryType = EntryType.SPEECH, closing: bool = False) -> Optional[TranscriptEntry]:
        if not closing and not self._writable(session):
            logger.debug(f"Dropping transcript entry for closed session {session.id}: {text[:50]}")
            return None
        return session.transcript.append(speaker, text, entry_type)

    def _set_flag(self, session: CallSession, flag: str):
        if self._writable(session) and not getattr(session, flag):
            setattr(session, flag, True)

    def _attach_evaluation(self, session: CallSession, evaluation: StudentEvaluation) -> bool:
        if not self._writable(session) or session.evaluation is not None:
            return False
        session.evaluation = evaluation
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initiate_call(
        self,
        contact_type,
        call_type,
        contact_id: Optional[str] = None,
        contact_name: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> CallSession:
        """Create an active session and speak the opener for its (contact type, call type)"""
        contact_type = ContactType(contact_type)
        call_type = CallType(call_type)
        name = contact_name or self.directory.resolve_name(contact_type, contact_id)

        session = CallSession(
            contact_type=contact_type,
            call_type=call_type,
            contact_name=name,
            contact_id=contact_id,
            job_id=job_id,
        )
        self._sessions[session.id] = session
        self._turn_locks[session.id] = asyncio.Lock()
        self._turn_counts[session.id] = 0
        log = self._logs[session.id] = CallLogger(session.id)

        log.section("CALL STARTED")
        log.detail(f"{contact_type.value} {name} | {call_type.value}")

        opener = self.responder.opening_line(contact_type, call_type, name)
        self._append(session, Speaker.JERRY, opener)
        log.agent(opener)
        await self._speak(session, opener)
        return session

    async def start_voice_interaction(self, session_id: str) -> bool:
        """Open the recognition stream for a session.

        No-op (returns False) if the gateway is already listening. UnsupportedError
        propagates to the caller.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if not self._writable(session):
            return False
        if self.speech.is_currently_listening():
            logger.debug(f"Already listening - ignoring start for {session_id}")
            return False

        handle = await self.speech.start_listening()
        self._listening_session = session_id
        self._last_errors.pop(session_id, None)
        self._listen_tasks[session_id] = asyncio.create_task(self._consume_recognition(session_id, handle))
        self._logs[session_id].phase("Listening")
        return True

    async def _consume_recognition(self, session_id: str, handle: RecognitionHandle):
        log = self._logs.get(session_id) or CallLogger(session_id)
        try:
            async for event in handle:
                if isinstance(event, RecognitionStarted):
                    log.detail("Voice recognition started")
                elif isinstance(event, InterimTranscript):
                    self._interim[session_id] = event.text
                elif isinstance(event, FinalTranscript):
                    self._interim.pop(session_id, None)
                    await self.process_utterance(session_id, event.text)
                elif isinstance(event, RecognitionFault):
                    self._last_errors[session_id] = event.reason
                    log.warn(f"Speech recognition error: {event.reason}")
                    if event.reason in FATAL_RECOGNITION_ERRORS and session_id not in self._end_tasks:
                        self._end_tasks[session_id] = asyncio.create_task(
                            self.fail_call(session_id, f"speech recognition: {event.reason}"))
                elif isinstance(event, RecognitionEnded):
                    log.detail("Voice recognition ended")
        except Exception as e:
            log.error(f"Recognition loop error: {type(e).__name__}: {e}")
        finally:
            # A newer stream for this session may already own the slot
            if self._listen_tasks.get(session_id) is asyncio.current_task():
                del self._listen_tasks[session_id]
                self._interim.pop(session_id, None)
                if self._listening_session == session_id:
                    self._listening_session = None

    async def process_utterance(self, session_id: str, text: str) -> Optional[GeneratedReply]:
        """Run one turn for a final contact utterance.

        Turns on a session are serialized. Utterances for unknown or closed sessions
        are dropped and return None.
        """
        text = (text or "").strip()
        session = self._sessions.get(session_id)
        if session is None or not self._writable(session) or not text:
            logger.debug(f"Dropping utterance for inactive session {session_id}")
            return None

        log = self._logs[session_id]
        async with self._turn_locks[session_id]:
            if not self._writable(session):
                logger.debug(f"Dropping utterance for inactive session {session_id}")
                return None

            self._turn_counts[session_id] += 1
            log.turn(self._turn_counts[session_id])

            history = session.transcript.recent(self.config.transcript_window)
            self._append(session, Speaker.CONTACT, text)
            log.contact(text)

            reply = await self.responder.generate_reply(text, self._build_context(session, history))
            if not self._writable(session):
                log.warn("Call closed while generating reply - dropping it")
                return None

            self._append(session, Speaker.JERRY, reply.text)
            log.agent(reply.text)
            log.metric(f"{reply.source} reply, confidence {reply.confidence:.1f}"
                       + (f", action {reply.action.type.value}" if reply.action else ""))
            await self._speak(session, reply.text)

            if reply.action and self._writable(session):
                await self.actions.execute(SessionOps(self, session), reply.action)

            self._schedule_persist(session)
            return reply

    def _build_context(self, session: CallSession, history: Tuple[TranscriptEntry, ...]) -> ConversationContext:
        questions_asked = sum(
            1 for e in session.transcript
            if e.speaker == Speaker.JERRY and e.type == EntryType.SPEECH and "?" in e.text
        )
        resume = job = None
        if session.call_type == CallType.TELEPHONIC_INTERVIEW:
            resume = self.directory.resume_summary(session.contact_id)
            job = self.directory.job_for(session.job_id, session.contact_id)
        return ConversationContext(
            contact_type=session.contact_type,
            contact_name=session.contact_name,
            call_type=session.call_type,
            history=history,
            session_duration=int((datetime.now() - session.start_time).total_seconds()),
            resume=resume,
            job_description=job,
            interview_question_count=self.config.interview_question_count,
            questions_asked=questions_asked,
        )

    async def end_call(self, session_id: str) -> Optional[CallSession]:
        """Complete a call. Unknown or already-ended sessions are a no-op (None)."""
        return await self._finalize(session_id, CallStatus.COMPLETED)

    async def fail_call(self, session_id: str, reason: str) -> Optional[CallSession]:
        return await self._finalize(session_id, CallStatus.FAILED, reason)

    def _schedule_end(self, session_id: str) -> bool:
        if session_id in self._end_tasks or session_id not in self._sessions:
            return False
        self._end_tasks[session_id] = asyncio.create_task(self._delayed_end(session_id))
        return True

    async def _delayed_end(self, session_id: str):
        await asyncio.sleep(self.config.end_call_delay)
        await self.end_call(session_id)

    async def _finalize(self, session_id: str, status: CallStatus, reason: str = None) -> Optional[CallSession]:
        session = self._sessions.get(session_id)
        if session is None or session_id in self._finalizing or not session.is_active:
            return None
        self._finalizing.add(session_id)
        log = self._logs.get(session_id) or CallLogger(session_id)

        try:
            log.section("CALL ENDED" if status == CallStatus.COMPLETED else "CALL FAILED")

            end_task = self._end_tasks.pop(session_id, None)
            if end_task and end_task is not asyncio.current_task():
                end_task.cancel()

            await self._silence(session_id)

            session.end_time = datetime.now()
            session.duration = int((session.end_time - session.start_time).total_seconds())
            session.notes = self._summarize(session, reason)
            self._append(session, Speaker.JERRY, f"Call ended. Duration: {session.duration} seconds",
                         EntryType.ACTION, closing=True)
            session.status = status
            log.detail(f"Duration: {session.duration}s | Turns: {self._turn_counts.get(session_id, 0)}")

            # Earlier snapshots must land before the final one
            tail = self._persist_tails.pop(session_id, None)
            if tail:
                await asyncio.gather(tail, return_exceptions=True)
            await self._write(session.to_dict())

            if session.evaluation is not None and session.contact_id:
                await self._write_evaluation(session)
        finally:
            self._evict(session_id)
        return session

    async def _silence(self, session_id: str):
        """Stop this session's recognition stream and any speech it is playing"""
        if self._listening_session == session_id:
            try:
                await self.speech.stop_listening()
            except Exception as e:
                logger.warning(f"Error stopping recognition for {session_id}: {e}")
        listen_task = self._listen_tasks.get(session_id)
        if listen_task and listen_task is not asyncio.current_task():
            listen_task.cancel()
        if self._speaking_session in (session_id, None):
            try:
                await self.speech.stop_speaking()
            except Exception as e:
                logger.warning(f"Error stopping speech for {session_id}: {e}")

    def _evict(self, session_id: str):
        self._sessions.pop(session_id, None)
        self._turn_locks.pop(session_id, None)
        self._turn_counts.pop(session_id, None)
        self._interim.pop(session_id, None)
        self._last_errors.pop(session_id, None)
        self._logs.pop(session_id, None)
        # A listen task cancelled before its first step never reaches its own cleanup
        self._listen_tasks.pop(session_id, None)
        if self._listening_session == session_id:
            self._listening_session = None
        self._finalizing.discard(session_id)

    @staticmethod
    def _summarize(session: CallSession, reason: str = None) -> str:
        turns = session.transcript.count(speaker=Speaker.CONTACT, type=EntryType.SPEECH)
        parts = [f"{session.call_type.value.replace('_', ' ').capitalize()} call with "
                 f"{session.contact_name} ({session.contact_type.value}), {turns} contact turns"]
        if session.jotform_sent:
            parts.append("JotForm sent")
        if session.teams_scheduled:
            parts.append("Teams interview scheduled")
        if session.evaluation is not None:
            parts.append(f"evaluation {session.evaluation.overall_score}/10 "
                         f"({session.evaluation.recommendation.value})")
        if reason:
            parts.append(f"failed: {reason}")
        return "; ".join(parts)

    # ------------------------------------------------------------------
    # Speech
    # ------------------------------------------------------------------

    async def _speak(self, session: CallSession, text: str):
        options = SpeakOptions(
            voice=self.config.tts_voice,
            rate=self.config.tts_rate,
            pitch=self.config.tts_pitch,
            volume=self.config.tts_volume,
        )
        self._speaking_session = session.id
        try:
            await self.speech.speak(text, options)
        except SpeechError as e:
            logger.warning(f"[{session.id[-8:]}] ⚠ TTS error: {e}")
        finally:
            if self._speaking_session == session.id:
                self._speaking_session = None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _schedule_persist(self, session: CallSession):
        """Queue a background upsert of the session's current state"""
        if not self._writable(session):
            return
        snapshot = session.to_dict()
        previous = self._persist_tails.get(session.id)

        async def write_after_previous():
            if previous:
                await asyncio.gather(previous, return_exceptions=True)
            await self._write(snapshot)

        self._persist_tails[session.id] = asyncio.create_task(write_after_previous())

    async def _write(self, record: dict) -> bool:
        """Upsert one snapshot; on failure keep it in the backup queue"""
        try:
            await self.store.upsert_call_log(record)
        except Exception as e:
            logger.warning(f"Call log write failed for {record['id']}, backing up: {e}")
            try:
                self.backup.save(record)
            except OSError as backup_error:
                logger.error(f"Backup write failed for {record['id']}: {backup_error}")
            return False
        # A stale backup must not overwrite this newer row on the next retry
        self.backup.remove(record["id"])
        return True

    async def _write_evaluation(self, session: CallSession):
        try:
            saved = await self.store.save_evaluation(session.contact_id, session.evaluation.to_dict())
            if not saved:
                logger.info(f"Student {session.contact_id} already has an evaluation - kept existing")
        except Exception as e:
            logger.error(f"Evaluation write failed for student {session.contact_id}: {e}")

    async def retry_failed_saves(self) -> Tuple[int, int]:
        """Replay backed-up call logs; returns (written, remaining)"""
        return await self.backup.replay(self.store.upsert_call_log)

    async def list_call_logs(self, limit: Optional[int] = None) -> list:
        try:
            return await self.store.list_call_logs(limit)
        except Exception as e:
            logger.warning(f"Could not list call logs: {e}")
            return []

    async def shutdown(self):
        """End every live call (used on server shutdown)"""
        for session_id in list(self._sessions):
            await self.end_call(session_id)
