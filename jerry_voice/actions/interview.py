"""
Interview actions
Scores a completed telephonic interview and tracks question flow
"""

from typing import Sequence

from jerry_voice.models import Action, ActionType, CallType, ContactType, Recommendation, StudentEvaluation
from jerry_voice.transcript import EntryType, Speaker, TranscriptEntry

from .base import ActionResult, BaseAction
from .registry import register_action

DEFAULT_STRENGTHS = ["Good technical understanding", "Clear communication", "Relevant experience"]
DEFAULT_WEAKNESSES = ["Could improve in advanced concepts", "Limited industry exposure"]
DEFAULT_OPPORTUNITIES = ["Skill development", "Industry exposure"]
DEFAULT_THREATS = ["Competition"]


def _recommendation_for(score: float) -> Recommendation:
    if score >= 8:
        return Recommendation.STRONGLY_RECOMMEND
    if score >= 6.5:
        return Recommendation.RECOMMEND
    if score >= 5:
        return Recommendation.CONSIDER
    return Recommendation.NOT_RECOMMEND


def build_evaluation(entries: Sequence[TranscriptEntry]) -> StudentEvaluation:
    """Score an interview from the candidate's answers.

    More answers raise the base score (capped at 9); longer answers add up to one
    point of detail bonus.
    """
    answers = [e for e in entries if e.speaker == Speaker.CONTACT and e.type == EntryType.SPEECH]
    quality = min(len(answers) * 1.5, 9.0) if answers else 6.0
    avg_words = sum(len(a.text.split()) for a in answers) / len(answers) if answers else 0
    detail = min(avg_words / 20, 1.0)

    technical = round(min(quality + detail * 0.5, 10.0), 1)
    communication = round(min(quality + detail, 10.0), 1)
    problem_solving = round(max(min(quality - 0.5 + detail * 0.5, 10.0), 0.0), 1)
    overall = round((technical + communication + problem_solving) / 3, 1)
    recommendation = _recommendation_for(overall)

    strengths = list(DEFAULT_STRENGTHS)
    weaknesses = list(DEFAULT_WEAKNESSES)
    if detail < 0.5:
        weaknesses.append("Answers lacked detail")

    return StudentEvaluation(
        technical_skills=technical,
        communication=communication,
        problem_solving=problem_solving,
        overall_score=overall,
        recommendation=recommendation,
        strengths=strengths,
        weaknesses=weaknesses,
        opportunities=list(DEFAULT_OPPORTUNITIES),
        threats=list(DEFAULT_THREATS),
        notes=f"Evaluated on {len(answers)} answers; recommendation: {recommendation.value.replace('_', ' ')}",
    )


@register_action
class ConductEvaluationAction(BaseAction):
    action_type = ActionType.CONDUCT_EVALUATION
    description = "Score the candidate once all interview questions have been answered"

    async def execute(self, ops, action: Action) -> ActionResult:
        session = ops.session
        if session.contact_type != ContactType.STUDENT or session.call_type != CallType.TELEPHONIC_INTERVIEW:
            return ActionResult(success=False, message="Evaluation only applies to student telephonic interviews")
        if session.evaluation is not None:
            return ActionResult(success=False, message="Evaluation already attached")

        evaluation = build_evaluation(session.transcript.entries)
        if not ops.attach_evaluation(evaluation):
            return ActionResult(success=False, message="Evaluation already attached")

        ops.append_note(
            f"Interview evaluation: overall {evaluation.overall_score}/10 "
            f"(technical {evaluation.technical_skills}, communication {evaluation.communication}, "
            f"problem solving {evaluation.problem_solving}) - {evaluation.recommendation.value.replace('_', ' ')}",
            EntryType.EVALUATION,
        )
        ops.request_persist()
        return ActionResult(success=True, message="Evaluation attached", data=evaluation.to_dict())


@register_action
class AskInterviewQuestionAction(BaseAction):
    action_type = ActionType.ASK_INTERVIEW_QUESTION
    description = "Continue the interview with the next question"

    async def execute(self, ops, action: Action) -> ActionResult:
        asked = ops.session.transcript.count(speaker=Speaker.JERRY, type=EntryType.SPEECH)
        return ActionResult(success=True, message="Interview continues", data={"agent_lines": asked})
