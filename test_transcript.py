"""
Transcript store tests
"""

import dataclasses

import pytest

from jerry_voice.transcript import EntryType, Speaker, Transcript


def test_append_keeps_chronological_order():
    transcript = Transcript()
    first = transcript.append(Speaker.JERRY, "Hello Priya")
    second = transcript.append(Speaker.CONTACT, "Hi Jerry")

    assert len(transcript) == 2
    assert transcript.entries == (first, second)
    assert first.timestamp <= second.timestamp
    assert first.id != second.id


def test_entries_are_immutable():
    transcript = Transcript()
    entry = transcript.append(Speaker.CONTACT, "I am interested")

    with pytest.raises(dataclasses.FrozenInstanceError):
        entry.text = "edited"
    assert isinstance(transcript.entries, tuple)


def test_recent_returns_last_n_oldest_first():
    transcript = Transcript()
    for i in range(8):
        transcript.append(Speaker.CONTACT if i % 2 else Speaker.JERRY, f"line {i}")

    recent = transcript.recent(6)
    assert [e.text for e in recent] == [f"line {i}" for i in range(2, 8)]
    assert transcript.recent(0) == ()
    assert len(transcript.recent(20)) == 8


def test_count_filters_by_speaker_and_type():
    transcript = Transcript()
    transcript.append(Speaker.JERRY, "Question one?")
    transcript.append(Speaker.CONTACT, "Answer one")
    transcript.append(Speaker.JERRY, "JotForm sent", EntryType.ACTION)

    assert transcript.count() == 3
    assert transcript.count(speaker=Speaker.JERRY) == 2
    assert transcript.count(speaker=Speaker.JERRY, type=EntryType.SPEECH) == 1
    assert transcript.count(type=EntryType.ACTION) == 1


def test_to_list_serializes_entries():
    transcript = Transcript()
    transcript.append("jerry", "Evaluation done", "evaluation")

    [row] = transcript.to_list()
    assert row["speaker"] == "jerry"
    assert row["type"] == "evaluation"
    assert row["text"] == "Evaluation done"
    assert row["id"].startswith("entry_")
