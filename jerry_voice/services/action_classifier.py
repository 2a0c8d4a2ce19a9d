"""
Action classification for generated replies

KeywordActionClassifier is a best-effort heuristic over the cleaned reply text;
it will miss some intents and invent others. FunctionCallActionClassifier reads
structured functionCall parts when Gemini function calling is enabled and falls
back to keywords otherwise. Both produce the same Action type, so the session
manager's dispatch does not care which one is in use.
"""

import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from jerry_voice.models import Action, ActionType, CallType, ContactType, ConversationContext

PLACEHOLDER_TIME = "proposed time"

_DAY_PATTERN = re.compile(
    r"\b(monday|tuesday|wednesday|thursday|friday|saturday|sunday|today|tomorrow)\b", re.IGNORECASE
)
_TIME_PATTERN = re.compile(
    r"\b(\d{1,2}:\d{2}\s*(?:am|pm|a\.m\.|p\.m\.)?|\d{1,2}\s*(?:am|pm|a\.m\.|p\.m\.))", re.IGNORECASE
)


def extract_schedule_time(text: str) -> str:
    """Pull a proposed meeting time out of free text ('Monday 10:30 am', '3 pm').

    Returns PLACEHOLDER_TIME when nothing time-like is found.
    """
    if not text:
        return PLACEHOLDER_TIME
    time_match = _TIME_PATTERN.search(text)
    if not time_match:
        return PLACEHOLDER_TIME
    found = re.sub(r"\s+", " ", time_match.group(1)).strip().lower()
    day_match = _DAY_PATTERN.search(text)
    if day_match:
        return f"{day_match.group(1).capitalize()} {found}"
    return found


def _has_word(text: str, word: str) -> bool:
    return re.search(rf"\b{re.escape(word)}\b", text) is not None


class ActionClassifier(ABC):
    """Turns one generated reply into an optional Action"""

    def tool_declarations(self) -> Optional[List[Dict[str, Any]]]:
        """Function declarations to send with the request, if this classifier uses them"""
        return None

    @abstractmethod
    def classify(self, reply_text: str, utterance: str, context: ConversationContext,
                 function_calls: Sequence[Dict[str, Any]] = ()) -> Optional[Action]:
        pass


class KeywordActionClassifier(ActionClassifier):
    def classify(self, reply_text, utterance, context, function_calls=()):
        text = (reply_text or "").lower()
        said = (utterance or "").lower()

        # Closing lines take priority over everything else
        if (_has_word(text, "end") and _has_word(text, "call")) or _has_word(text, "goodbye"):
            return Action(ActionType.END_CALL)

        if (context.contact_type == ContactType.STUDENT
                and context.call_type == CallType.TELEPHONIC_INTERVIEW
                and context.questions_asked >= context.interview_question_count):
            return Action(ActionType.CONDUCT_EVALUATION)

        if _has_word(text, "send") and ("form" in text or "jotform" in text):
            return Action(ActionType.SEND_JOTFORM)

        if context.call_type == CallType.TEAMS_SCHEDULING and "schedule" in text and "meeting" in text:
            return Action(
                ActionType.SCHEDULE_TEAMS_MEETING,
                {"scheduled_time": extract_schedule_time(reply_text)},
            )

        if context.contact_type == ContactType.TPO and "email" in said and "provide" in text:
            return Action(ActionType.REQUEST_EMAIL)

        return None


class FunctionCallActionClassifier(ActionClassifier):
    """Uses Gemini functionCall parts; keyword scan when the model made no call"""

    def __init__(self, declarations: List[Dict[str, Any]], fallback: ActionClassifier = None):
        self._declarations = declarations
        self._fallback = fallback or KeywordActionClassifier()

    def tool_declarations(self):
        return self._declarations

    def classify(self, reply_text, utterance, context, function_calls=()):
        for call in function_calls:
            name = call.get("name")
            try:
                action_type = ActionType(name)
            except ValueError:
                logger.warning(f"Ignoring unknown function call from model: {name}")
                continue
            parameters = dict(call.get("args") or {})
            if action_type == ActionType.SCHEDULE_TEAMS_MEETING and not parameters.get("scheduled_time"):
                parameters["scheduled_time"] = extract_schedule_time(reply_text)
            return Action(action_type, parameters)
        return self._fallback.classify(reply_text, utterance, context)
