"""
Send JotForm action
Marks the internship form as sent and records it on the call
"""

from jerry_voice.models import Action, ActionType
from jerry_voice.transcript import EntryType

from .base import ActionResult, BaseAction
from .registry import register_action


@register_action
class SendJotformAction(BaseAction):
    action_type = ActionType.SEND_JOTFORM
    description = "Send the internship application form (JotForm) to the contact by email and SMS"

    async def execute(self, ops, action: Action) -> ActionResult:
        if ops.session.jotform_sent:
            return ActionResult(success=False, message="JotForm already sent on this call")

        ops.mark_jotform_sent()
        ops.append_note("JotForm sent to contact via email and SMS", EntryType.ACTION)
        ops.request_persist()
        return ActionResult(success=True, message="JotForm sent", data={"jotform_sent": True})
