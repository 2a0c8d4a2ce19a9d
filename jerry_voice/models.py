"""
Call session data model

CallSession is owned by the CallSessionManager for its whole active lifetime.
Other components read it; they never mutate it directly.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from jerry_voice.transcript import Transcript


class ContactType(str, Enum):
    STUDENT = "student"
    TPO = "tpo"


class CallType(str, Enum):
    INTRODUCTION = "introduction"
    TELEPHONIC_INTERVIEW = "telephonic_interview"
    TEAMS_SCHEDULING = "teams_scheduling"
    TPO_OUTREACH = "tpo_outreach"


class CallStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class Recommendation(str, Enum):
    STRONGLY_RECOMMEND = "strongly_recommend"
    RECOMMEND = "recommend"
    CONSIDER = "consider"
    NOT_RECOMMEND = "not_recommend"


class ActionType(str, Enum):
    SEND_JOTFORM = "send_jotform"
    SCHEDULE_TEAMS_MEETING = "schedule_teams_meeting"
    CONDUCT_EVALUATION = "conduct_evaluation"
    REQUEST_EMAIL = "request_email"
    END_CALL = "end_call"
    ASK_INTERVIEW_QUESTION = "ask_interview_question"


@dataclass
class Action:
    """Intent detected in a generated reply"""
    type: ActionType
    parameters: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "parameters": dict(self.parameters)}


@dataclass(frozen=True)
class StudentEvaluation:
    """Interview scorecard, attached at most once per session"""
    technical_skills: float
    communication: float
    problem_solving: float
    overall_score: float
    recommendation: Recommendation
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    opportunities: List[str] = field(default_factory=list)
    threats: List[str] = field(default_factory=list)
    notes: str = ""

    def __post_init__(self):
        for name in ("technical_skills", "communication", "problem_solving", "overall_score"):
            value = getattr(self, name)
            if not 0 <= value <= 10:
                raise ValueError(f"{name} must be within [0, 10], got {value}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "technical_skills": self.technical_skills,
            "communication": self.communication,
            "problem_solving": self.problem_solving,
            "overall_score": self.overall_score,
            "recommendation": self.recommendation.value,
            "strengths": list(self.strengths),
            "weaknesses": list(self.weaknesses),
            "opportunities": list(self.opportunities),
            "threats": list(self.threats),
            "notes": self.notes,
        }


def new_session_id() -> str:
    return f"call_{uuid.uuid4().hex}"


@dataclass
class CallSession:
    """One call attempt with a student or TPO"""
    contact_type: ContactType
    call_type: CallType
    contact_name: str
    contact_id: Optional[str] = None
    job_id: Optional[str] = None
    id: str = field(default_factory=new_session_id)
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    status: CallStatus = CallStatus.ACTIVE
    transcript: Transcript = field(default_factory=Transcript)
    duration: int = 0
    notes: str = ""
    jotform_sent: bool = False
    teams_scheduled: bool = False
    evaluation: Optional[StudentEvaluation] = None

    @property
    def is_active(self) -> bool:
        return self.status == CallStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        """Serialized form used for the call-log row, the backup queue and the API"""
        return {
            "id": self.id,
            "contact_type": self.contact_type.value,
            "contact_id": self.contact_id,
            "contact_name": self.contact_name,
            "call_type": self.call_type.value,
            "job_id": self.job_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "status": self.status.value,
            "duration": self.duration,
            "notes": self.notes,
            "jotform_sent": self.jotform_sent,
            "teams_scheduled": self.teams_scheduled,
            "evaluation": self.evaluation.to_dict() if self.evaluation else None,
            "transcript": self.transcript.to_list(),
        }


@dataclass
class ConversationContext:
    """Everything the response generator knows about the call for one turn"""
    contact_type: ContactType
    contact_name: str
    call_type: CallType
    history: tuple = ()
    session_duration: int = 0
    resume: Optional[Dict[str, Any]] = None
    job_description: Optional[Dict[str, Any]] = None
    interview_question_count: int = 5
    questions_asked: int = 0
