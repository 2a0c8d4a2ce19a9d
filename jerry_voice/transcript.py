"""
Transcript store - append-only utterance log for one call session
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterator, List, Tuple


class Speaker(str, Enum):
    CONTACT = "contact"
    JERRY = "jerry"


class EntryType(str, Enum):
    SPEECH = "speech"
    ACTION = "action"
    EVALUATION = "evaluation"


@dataclass(frozen=True)
class TranscriptEntry:
    speaker: Speaker
    text: str
    type: EntryType = EntryType.SPEECH
    id: str = field(default_factory=lambda: f"entry_{uuid.uuid4().hex[:12]}")
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "speaker": self.speaker.value,
            "text": self.text,
            "type": self.type.value,
        }


class Transcript:
    """Ordered log of entries; insertion order is chronological order.

    Entries cannot be edited or removed once appended.
    """

    def __init__(self):
        self._entries: List[TranscriptEntry] = []

    def append(self, speaker: Speaker, text: str, type: EntryType = EntryType.SPEECH) -> TranscriptEntry:
        entry = TranscriptEntry(speaker=Speaker(speaker), text=text, type=EntryType(type))
        self._entries.append(entry)
        return entry

    def recent(self, n: int) -> Tuple[TranscriptEntry, ...]:
        """Last n entries, oldest first"""
        if n <= 0:
            return ()
        return tuple(self._entries[-n:])

    @property
    def entries(self) -> Tuple[TranscriptEntry, ...]:
        return tuple(self._entries)

    def count(self, speaker: Speaker = None, type: EntryType = None) -> int:
        return sum(
            1 for e in self._entries
            if (speaker is None or e.speaker == speaker) and (type is None or e.type == type)
        )

    def to_list(self) -> List[Dict[str, str]]:
        return [e.to_dict() for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[TranscriptEntry]:
        return iter(tuple(self._entries))
