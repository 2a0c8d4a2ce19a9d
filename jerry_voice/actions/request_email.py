"""
Request Email action
"""

from jerry_voice.models import Action, ActionType
from jerry_voice.transcript import EntryType

from .base import ActionResult, BaseAction
from .registry import register_action


@register_action
class RequestEmailAction(BaseAction):
    action_type = ActionType.REQUEST_EMAIL
    description = "Ask the contact for an email address so the form link can be sent"

    async def execute(self, ops, action: Action) -> ActionResult:
        ops.append_note("Requested email address from contact to share the JotForm link", EntryType.ACTION)
        return ActionResult(success=True, message="Email address requested")
