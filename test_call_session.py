"""
Call session manager tests: lifecycle, turn loop, actions, voice interaction and
persistence with the failed-save backup queue
"""

import asyncio
import os

import httpx
import pytest

from conftest import wait_for
from jerry_voice.models import ActionType, CallStatus
from jerry_voice.services.call_session import SessionNotFoundError
from jerry_voice.services.response_generator import GeneratedReply
from jerry_voice.speech import UnsupportedError
from jerry_voice.transcript import EntryType, Speaker


def texts(session, entry_type=None):
    return [e.text for e in session.transcript if entry_type is None or e.type == entry_type]


# ============================================================================
# Initiation
# ============================================================================

async def test_initiate_speaks_opener(manager, gateway):
    session = await manager.initiate_call("student", "introduction", contact_id="1")

    assert session.contact_name == "Aarav Sharma"
    assert session.status == CallStatus.ACTIVE
    assert session.is_active
    assert len(session.transcript) == 1
    [opener] = session.transcript.entries
    assert opener.speaker == Speaker.JERRY
    assert opener.text.startswith("Hi Aarav Sharma")
    assert gateway.spoken == [opener.text]
    assert manager.get_session(session.id) is session


async def test_tpo_and_student_openers_differ(manager):
    tpo = await manager.initiate_call("tpo", "tpo_outreach", contact_id="1")
    student = await manager.initiate_call("student", "tpo_outreach", contact_id="1")

    assert tpo.contact_name == "Dr. Rajesh Kumar"
    assert texts(tpo)[0].startswith("Good day Dr. Rajesh Kumar")
    assert texts(student)[0].startswith("Hello Aarav Sharma")


async def test_contact_name_resolution(manager):
    explicit = await manager.initiate_call("student", "introduction", contact_id="1", contact_name="Ana")
    unknown_student = await manager.initiate_call("student", "introduction", contact_id="99")
    unknown_tpo = await manager.initiate_call("tpo", "tpo_outreach")

    assert explicit.contact_name == "Ana"
    assert unknown_student.contact_name == "Unknown Student"
    assert unknown_tpo.contact_name == "TPO Contact"


async def test_initiate_without_synthesis_still_records_opener(manager, gateway):
    gateway.synthesis = False

    session = await manager.initiate_call("student", "introduction", contact_id="2")

    assert len(session.transcript) == 1
    assert gateway.spoken == []


# ============================================================================
# Turn loop
# ============================================================================

async def test_turn_appends_contact_then_reply(manager, gateway, gemini, store):
    session = await manager.initiate_call("student", "introduction", contact_id="1")
    opener = texts(session)[0]

    reply = await manager.process_utterance(session.id, "Yes, I am interested")

    assert len(session.transcript) == 3
    assert [e.speaker for e in session.transcript] == [Speaker.JERRY, Speaker.CONTACT, Speaker.JERRY]
    assert texts(session)[2] == reply.text
    assert gateway.spoken[-1] == reply.text
    assert opener in gemini.last_prompt
    assert "Aarav Sharma: Yes, I am interested" in gemini.last_prompt

    await wait_for(lambda: session.id in store.rows)
    assert store.rows[session.id]["status"] == "active"


async def test_concurrent_utterances_are_serialized(manager):
    session = await manager.initiate_call("student", "introduction", contact_id="3")

    await asyncio.gather(
        manager.process_utterance(session.id, "First answer"),
        manager.process_utterance(session.id, "Second answer"),
    )

    speakers = [e.speaker for e in session.transcript]
    assert speakers == [Speaker.JERRY, Speaker.CONTACT, Speaker.JERRY, Speaker.CONTACT, Speaker.JERRY]


async def test_prompt_history_is_bounded(manager, gemini):
    session = await manager.initiate_call("student", "introduction", contact_id="4")
    opener = texts(session)[0]

    for i in range(4):
        await manager.process_utterance(session.id, f"Answer {i}")

    assert opener not in gemini.last_prompt
    assert "Answer 2" in gemini.last_prompt


async def test_blank_utterance_is_ignored(manager):
    session = await manager.initiate_call("student", "introduction", contact_id="1")

    assert await manager.process_utterance(session.id, "   ") is None
    assert len(session.transcript) == 1


async def test_generation_failure_uses_fallback(manager, gemini):
    gemini.queue(httpx.ConnectError("unreachable"))
    session = await manager.initiate_call("student", "introduction", contact_id="1")

    reply = await manager.process_utterance(session.id, "Hello?")

    assert reply.source == "fallback"
    assert texts(session)[-1] == reply.text


# ============================================================================
# Actions
# ============================================================================

async def test_jotform_is_sent_once(manager, gemini):
    gemini.queue("I'll send you the internship form right away.", "Sure, I'll send the form again.")
    session = await manager.initiate_call("tpo", "tpo_outreach", contact_id="1")

    first = await manager.process_utterance(session.id, "Please share the details")
    await manager.process_utterance(session.id, "Can you resend it?")

    assert first.action.type == ActionType.SEND_JOTFORM
    assert session.jotform_sent
    assert texts(session, EntryType.ACTION) == ["JotForm sent to contact via email and SMS"]


async def test_tpo_fallback_sends_jotform(manager, gemini):
    gemini.queue(httpx.ConnectError("unreachable"), httpx.ConnectError("unreachable"))
    session = await manager.initiate_call("tpo", "tpo_outreach", contact_id="2")

    reply = await manager.process_utterance(session.id, "Tell me more")
    await manager.process_utterance(session.id, "Okay")

    assert reply.source == "fallback"
    assert "send" in reply.text and "form" in reply.text
    assert session.jotform_sent
    assert len(texts(session, EntryType.ACTION)) == 1


async def test_teams_meeting_records_slot(manager, gemini):
    gemini.queue("Let me schedule a meeting for Monday at 10:30 am.")
    session = await manager.initiate_call("student", "teams_scheduling", contact_id="1")

    await manager.process_utterance(session.id, "Monday morning works for me")

    assert session.teams_scheduled
    [note] = texts(session, EntryType.ACTION)
    assert "Monday 10:30 am" in note


async def test_schedule_wording_on_introduction_call_books_nothing(manager, gemini, store):
    gemini.queue("Great, let me schedule a meeting to tell you more.")
    session = await manager.initiate_call("student", "introduction", contact_id="1")

    reply = await manager.process_utterance(session.id, "Sure, sounds interesting")

    assert reply.action is None
    assert not session.teams_scheduled
    await manager.end_call(session.id)
    assert store.rows[session.id]["teams_scheduled"] is False


async def test_evaluation_is_attached_once(manager, gemini, store):
    gemini.queue(
        "Great. What did you build with Spring Boot?",
        "Nice work. How did you test it?",
        "Thanks for sharing that.",
    )
    session = await manager.initiate_call("student", "telephonic_interview", contact_id="2")

    await manager.process_utterance(session.id, "Sure, I study Information Technology")
    assert "Skills: Java, Spring Boot" in gemini.last_prompt
    assert "JOB REQUIREMENTS" in gemini.last_prompt
    assert session.evaluation is None

    reply = await manager.process_utterance(session.id, "An inventory REST API for a startup")
    assert reply.action.type == ActionType.CONDUCT_EVALUATION
    evaluation = session.evaluation
    assert evaluation is not None
    assert 0 <= evaluation.overall_score <= 10

    await manager.process_utterance(session.id, "With integration tests")
    assert session.evaluation is evaluation
    assert len(texts(session, EntryType.EVALUATION)) == 1

    await manager.end_call(session.id)
    assert store.evaluations["2"] == evaluation.to_dict()
    assert store.rows[session.id]["evaluation"] == evaluation.to_dict()


async def test_end_call_action_ends_after_delay(manager, gemini, store):
    gemini.queue("Thank you for your time. Goodbye!")
    session = await manager.initiate_call("student", "introduction", contact_id="1")

    reply = await manager.process_utterance(session.id, "Not interested, thanks")

    assert reply.action.type == ActionType.END_CALL
    assert manager.get_session(session.id) is session
    await wait_for(lambda: manager.get_session(session.id) is None)
    assert session.status == CallStatus.COMPLETED
    assert store.rows[session.id]["status"] == "completed"


# ============================================================================
# Ending
# ============================================================================

async def test_end_call_finalizes_and_evicts(manager, store):
    session = await manager.initiate_call("student", "introduction", contact_id="1")
    await manager.process_utterance(session.id, "Tell me more")

    ended = await manager.end_call(session.id)

    assert ended is session
    assert session.status == CallStatus.COMPLETED
    assert session.end_time is not None
    assert session.duration >= 0
    last = session.transcript.entries[-1]
    assert last.type == EntryType.ACTION
    assert last.text == f"Call ended. Duration: {session.duration} seconds"
    assert manager.get_session(session.id) is None
    assert store.rows[session.id] == session.to_dict()


async def test_end_call_is_idempotent(manager, store):
    session = await manager.initiate_call("student", "introduction", contact_id="1")

    await manager.end_call(session.id)
    writes = store.writes
    transcript_length = len(session.transcript)

    assert await manager.end_call(session.id) is None
    assert await manager.end_call("call_unknown") is None
    assert store.writes == writes
    assert len(session.transcript) == transcript_length


async def test_utterance_after_end_is_dropped(manager):
    session = await manager.initiate_call("student", "introduction", contact_id="1")
    await manager.end_call(session.id)
    length = len(session.transcript)

    assert await manager.process_utterance(session.id, "Hello?") is None
    assert len(session.transcript) == length


async def test_reply_arriving_after_end_is_dropped(manager, monkeypatch, gateway):
    release = asyncio.Event()

    async def slow_reply(utterance, context):
        await release.wait()
        return GeneratedReply("This reply is too late", 0.9)

    monkeypatch.setattr(manager.responder, "generate_reply", slow_reply)
    session = await manager.initiate_call("student", "introduction", contact_id="1")
    turn = asyncio.create_task(manager.process_utterance(session.id, "Hello"))
    await wait_for(lambda: len(session.transcript) == 2)

    await manager.end_call(session.id)
    release.set()

    assert await turn is None
    assert "This reply is too late" not in texts(session)
    assert "This reply is too late" not in gateway.spoken


async def test_shutdown_ends_every_call(manager, store):
    first = await manager.initiate_call("student", "introduction", contact_id="1")
    second = await manager.initiate_call("tpo", "tpo_outreach", contact_id="2")

    await manager.shutdown()

    assert manager.active_sessions() == []
    assert store.rows[first.id]["status"] == "completed"
    assert store.rows[second.id]["status"] == "completed"


# ============================================================================
# Voice interaction
# ============================================================================

async def test_voice_turn_from_recognition(manager, gateway):
    session = await manager.initiate_call("student", "introduction", contact_id="1")

    assert await manager.start_voice_interaction(session.id) is True
    assert await manager.start_voice_interaction(session.id) is False
    assert gateway.opened == 1

    gateway.started()
    gateway.say("I would love", final=False)
    await wait_for(lambda: manager.interim_text(session.id) == "I would love")

    gateway.say("I would love to hear more")
    await wait_for(lambda: len(session.transcript) == 3)
    assert texts(session)[1] == "I would love to hear more"
    assert manager.interim_text(session.id) == ""

    await manager.end_call(session.id)
    assert not gateway.is_currently_listening()
    assert gateway.closed == 1


async def test_start_voice_interaction_errors(manager, gateway):
    with pytest.raises(SessionNotFoundError):
        await manager.start_voice_interaction("call_missing")

    session = await manager.initiate_call("student", "introduction", contact_id="1")
    gateway.recognition = False
    with pytest.raises(UnsupportedError):
        await manager.start_voice_interaction(session.id)


async def test_non_fatal_fault_keeps_call_active(manager, gateway):
    session = await manager.initiate_call("student", "introduction", contact_id="1")
    await manager.start_voice_interaction(session.id)

    gateway.fault("no-speech")
    gateway.end()

    await wait_for(lambda: manager.last_error(session.id) == "no-speech")
    await wait_for(lambda: not manager.is_listening(session.id))
    assert manager.get_session(session.id) is session
    assert await manager.start_voice_interaction(session.id) is True


async def test_fatal_fault_fails_the_call(manager, gateway, store):
    session = await manager.initiate_call("student", "introduction", contact_id="1")
    await manager.start_voice_interaction(session.id)

    gateway.fault("not-allowed")

    await wait_for(lambda: manager.get_session(session.id) is None)
    assert session.status == CallStatus.FAILED
    assert store.rows[session.id]["status"] == "failed"
    assert "not-allowed" in session.notes
    assert not gateway.is_currently_listening()


async def test_end_before_listen_task_runs_clears_listen_state(manager, gateway):
    session = await manager.initiate_call("student", "introduction", contact_id="1")
    assert await manager.start_voice_interaction(session.id) is True

    await manager.end_call(session.id)

    assert manager._listen_tasks == {}
    assert manager._listening_session is None
    assert not manager.is_listening(session.id)

    other = await manager.initiate_call("student", "introduction", contact_id="2")
    assert await manager.start_voice_interaction(other.id) is True
    assert manager.is_listening(other.id)


# ============================================================================
# Persistence and backup
# ============================================================================

async def test_failed_write_goes_to_backup(manager, store, backup):
    store.failing = True
    session = await manager.initiate_call("student", "introduction", contact_id="1")
    await manager.process_utterance(session.id, "Sounds good")

    ended = await manager.end_call(session.id)

    assert ended.status == CallStatus.COMPLETED
    assert manager.get_session(session.id) is None
    [(key, record)] = backup.entries()
    assert key == session.id
    assert record == session.to_dict()


async def test_retry_writes_backed_up_calls(manager, store, backup):
    store.failing = True
    first = await manager.initiate_call("student", "introduction", contact_id="1")
    second = await manager.initiate_call("tpo", "tpo_outreach", contact_id="1")
    await manager.end_call(first.id)
    await manager.end_call(second.id)
    assert len(backup) == 2

    store.failing = False
    written, remaining = await manager.retry_failed_saves()

    assert (written, remaining) == (2, 0)
    assert store.rows[first.id] == first.to_dict()
    assert store.rows[second.id] == second.to_dict()
    assert len(backup) == 0


async def test_retry_keeps_entries_that_still_fail(manager, store, backup):
    store.failing = True
    first = await manager.initiate_call("student", "introduction", contact_id="1")
    second = await manager.initiate_call("student", "introduction", contact_id="2")
    await manager.end_call(first.id)
    await manager.end_call(second.id)

    store.failing = False
    store.failing_ids = {first.id}
    written, remaining = await manager.retry_failed_saves()

    assert (written, remaining) == (1, 1)
    assert [key for key, _ in backup.entries()] == [first.id]
    assert second.id in store.rows


async def test_successful_write_clears_stale_backup(manager, store, backup):
    store.failing = True
    session = await manager.initiate_call("student", "introduction", contact_id="1")
    await manager.process_utterance(session.id, "Hello")
    await wait_for(lambda: len(backup) == 1)

    store.failing = False
    await manager.end_call(session.id)

    assert len(backup) == 0
    assert store.rows[session.id]["status"] == "completed"


async def test_retry_skips_backup_cleared_mid_sweep(manager, store, backup, monkeypatch):
    store.failing = True
    other = await manager.initiate_call("tpo", "tpo_outreach", contact_id="1")
    await manager.end_call(other.id)
    session = await manager.initiate_call("student", "introduction", contact_id="1")
    await manager.process_utterance(session.id, "Hello")
    await wait_for(lambda: len(backup) == 2)
    os.utime(backup.directory / f"{other.id}.json", (1, 1))
    store.failing = False

    holding = asyncio.Event()
    release = asyncio.Event()
    upsert = store.upsert_call_log

    async def held_upsert(record):
        if record["id"] == other.id:
            holding.set()
            await release.wait()
        await upsert(record)

    monkeypatch.setattr(store, "upsert_call_log", held_upsert)
    sweep = asyncio.create_task(manager.retry_failed_saves())
    await wait_for(holding.is_set)

    await manager.end_call(session.id)
    release.set()

    assert await sweep == (1, 0)
    assert store.rows[session.id]["status"] == "completed"
    assert store.rows[other.id]["status"] == "completed"


async def test_stale_backup_never_reopens_finished_row(manager, store, backup):
    session = await manager.initiate_call("student", "introduction", contact_id="1")
    stale = session.to_dict()
    await manager.end_call(session.id)

    backup.save(stale)
    written, remaining = await manager.retry_failed_saves()

    assert (written, remaining) == (1, 0)
    assert store.rows[session.id]["status"] == "completed"
    assert store.rows[session.id] == session.to_dict()


async def test_list_call_logs(manager, store):
    session = await manager.initiate_call("student", "introduction", contact_id="1")
    await manager.end_call(session.id)

    logs = await manager.list_call_logs(10)
    assert [row["id"] for row in logs] == [session.id]

    store.failing = True
    assert await manager.list_call_logs(10) == []
