"""
Actions Module for the Jerry voice agent
Side effects triggered by intents detected in generated replies
"""

from .base import ActionResult, BaseAction
from .registry import ActionRegistry, register_action
from .send_jotform import SendJotformAction
from .schedule_teams_meeting import ScheduleTeamsMeetingAction
from .interview import AskInterviewQuestionAction, ConductEvaluationAction, build_evaluation
from .request_email import RequestEmailAction
from .end_call import EndCallAction

__all__ = [
    'ActionRegistry',
    'ActionResult',
    'AskInterviewQuestionAction',
    'BaseAction',
    'ConductEvaluationAction',
    'EndCallAction',
    'RequestEmailAction',
    'ScheduleTeamsMeetingAction',
    'SendJotformAction',
    'build_evaluation',
    'register_action',
]
