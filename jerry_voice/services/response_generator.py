"""
Response generator - one contact utterance in, one spoken reply (plus optional action) out

Remote failures never reach the caller: every error path ends in the canned
fallback table keyed by (contact type, call type).
"""

import re
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from jerry_voice.core.config import Config, config as default_config
from jerry_voice.models import Action, ActionType, CallType, ContactType, ConversationContext
from jerry_voice.prompts import build_turn_prompt, fallback_reply, opening_line
from jerry_voice.services.action_classifier import (
    ActionClassifier,
    KeywordActionClassifier,
    extract_schedule_time,
)
from jerry_voice.services.gemini_client import GeminiClient, GenerationError

REMOTE_CONFIDENCE = 0.9

# Spoken when the model answered with a function call and no text
ACTION_FOLLOW_UPS = {
    ActionType.SEND_JOTFORM: "I'll send the internship form right away. Please keep an eye on your inbox.",
    ActionType.SCHEDULE_TEAMS_MEETING: "I've noted that slot for your Microsoft Teams interview. You'll receive an invite shortly.",
    ActionType.CONDUCT_EVALUATION: "Thank you, that covers all my questions for today.",
    ActionType.REQUEST_EMAIL: "Could you please share your email address so I can send you the details?",
    ActionType.END_CALL: "Thank you for speaking with me today. Goodbye!",
    ActionType.ASK_INTERVIEW_QUESTION: "Let's move on to the next question.",
}

_MARKUP = re.compile(r"\*\*|__|\*|`+|^#{1,6}\s*", re.MULTILINE)
_BLANK_LINES = re.compile(r"\n\s*\n+")


def clean_reply(text: str) -> str:
    """Strip markdown so the synthesizer does not read it aloud"""
    if not text:
        return ""
    cleaned = _MARKUP.sub("", text)
    cleaned = _BLANK_LINES.sub("\n", cleaned)
    return cleaned.strip()


@dataclass
class GeneratedReply:
    text: str
    confidence: float
    action: Optional[Action] = None
    source: str = "gemini"


class ResponseGenerator:
    def __init__(self, client: GeminiClient, classifier: ActionClassifier = None, cfg: Config = None):
        self.client = client
        self.classifier = classifier or KeywordActionClassifier()
        self.config = cfg or default_config

    def opening_line(self, contact_type: ContactType, call_type: CallType, contact_name: str) -> str:
        return opening_line(contact_type, call_type, contact_name,
                            agent=self.config.agent_name, company=self.config.company_name)

    async def generate_reply(self, utterance: str, context: ConversationContext) -> GeneratedReply:
        prompt = build_turn_prompt(utterance, context,
                                   agent=self.config.agent_name, company=self.config.company_name)
        try:
            reply = await self.client.generate(prompt, tools=self.classifier.tool_declarations())
        except GenerationError as e:
            logger.warning(f"Reply generation failed, using fallback: {e}")
            return self.fallback(utterance, context)
        except Exception as e:
            logger.error(f"Unexpected reply generation error, using fallback: {type(e).__name__}: {e}")
            return self.fallback(utterance, context)

        text = clean_reply(reply.text)
        action = self.classifier.classify(text, utterance, context, reply.function_calls)
        if not text:
            text = ACTION_FOLLOW_UPS.get(action.type) if action else ""
        if not text:
            logger.warning("Reply was empty after cleanup, using fallback")
            return self.fallback(utterance, context)

        return GeneratedReply(text=text, confidence=REMOTE_CONFIDENCE, action=action)

    def fallback(self, utterance: str, context: ConversationContext) -> GeneratedReply:
        canned = fallback_reply(context.contact_type, context.call_type, self.config.company_name)
        action = self.classifier.classify(canned.text, utterance, context)
        if action is None and canned.action is not None:
            parameters = {}
            if canned.action == ActionType.SCHEDULE_TEAMS_MEETING:
                parameters["scheduled_time"] = extract_schedule_time(canned.text)
            action = Action(canned.action, parameters)
        return GeneratedReply(text=canned.text, confidence=canned.confidence, action=action, source="fallback")
