"""
Schedule Teams Meeting action
Records the proposed Microsoft Teams interview slot
"""

from typing import Any, Dict

from jerry_voice.models import Action, ActionType, CallType
from jerry_voice.services.action_classifier import PLACEHOLDER_TIME
from jerry_voice.transcript import EntryType

from .base import ActionResult, BaseAction
from .registry import register_action


@register_action
class ScheduleTeamsMeetingAction(BaseAction):
    action_type = ActionType.SCHEDULE_TEAMS_MEETING
    description = "Schedule the Microsoft Teams interview once the student agrees to a slot"

    @property
    def parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "scheduled_time": {
                    "type": "string",
                    "description": "Agreed interview time (e.g., 'Monday 10:30 am', '3 pm')"
                }
            }
        }

    async def execute(self, ops, action: Action) -> ActionResult:
        if ops.session.call_type != CallType.TEAMS_SCHEDULING:
            return ActionResult(success=False, message="Teams scheduling only applies to teams_scheduling calls")

        scheduled_time = str(action.parameters.get("scheduled_time") or "").strip() or PLACEHOLDER_TIME

        ops.mark_teams_scheduled()
        ops.append_note(
            f"Microsoft Teams meeting scheduled for {scheduled_time} - invitations sent to student and interview panel",
            EntryType.ACTION,
        )
        return ActionResult(
            success=True,
            message=f"Teams meeting scheduled for {scheduled_time}",
            data={"scheduled_time": scheduled_time},
        )
