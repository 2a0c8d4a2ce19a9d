"""
End Call action
"""

from typing import Any, Dict

from jerry_voice.models import Action, ActionType

from .base import ActionResult, BaseAction
from .registry import register_action


@register_action
class EndCallAction(BaseAction):
    action_type = ActionType.END_CALL
    description = "End the call. ONLY use this AFTER the conversation is complete AND you have said goodbye."

    @property
    def parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "reason": {"type": "string"}
            }
        }

    async def execute(self, ops, action: Action) -> ActionResult:
        # Delay lets the closing line finish playing
        scheduled = ops.schedule_end()
        if not scheduled:
            return ActionResult(success=False, message="Call end already scheduled")
        return ActionResult(success=True, message=f"Call will end in {ops.end_call_delay:.1f}s",
                            data={"reason": action.parameters.get("reason", "conversation ended")})
