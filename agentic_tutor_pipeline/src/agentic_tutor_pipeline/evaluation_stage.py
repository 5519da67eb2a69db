"""
Evaluation Stage

Scores one submitted answer and writes personalized feedback.

Unlike assessment, evaluation must always produce feedback: when the
oracle's output cannot be decoded into the feedback schema, a deterministic
fallback is used (score 100 for a correct answer, 0 otherwise, with fixed
statements). The resulting score drives the adaptive-difficulty directive
published to the question setter.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from agentic_tutor_pipeline.difficulty_controller import AdaptiveDifficultyController
from agentic_tutor_pipeline.errors import NotFoundError, ParseError
from agentic_tutor_pipeline.message_bus import AgentMessageBus, OutgoingMessage
from agentic_tutor_pipeline.models import (
    QUESTIONS_TABLE,
    RESPONSES_TABLE,
    FEEDBACK_TABLE,
    CONTENT_GENERATOR,
    QUESTION_SETTER,
    FEEDBACK_EVALUATOR,
    EVALUATION_STARTED,
    RESPONSE_ANALYZED,
    FEEDBACK_COMPLETE,
    PERFORMANCE_UPDATE,
    Feedback,
    Question,
    Session,
    UserResponse,
)
from agentic_tutor_pipeline.response_parser import ResponseParser

logger = logging.getLogger(__name__)


class GeneratedLearningPath(BaseModel):
    model_config = ConfigDict(extra="ignore")

    immediate: List[str] = Field(default_factory=list)
    future: List[str] = Field(default_factory=list)
    resources: List[str] = Field(default_factory=list)


class GeneratedFeedback(BaseModel):
    """Shape of the feedback object the oracle is asked to return."""
    model_config = ConfigDict(extra="ignore")

    feedback_text: str = Field(min_length=1)
    score: float = Field(ge=0, le=100)
    strengths: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)
    next_steps: List[str] = Field(default_factory=list)
    learning_path_recommendations: GeneratedLearningPath = Field(default_factory=GeneratedLearningPath)


@dataclass
class PerformanceSnapshot:
    """Running performance over a principal's responses in one session."""
    correct_count: int
    total_count: int
    average_time: float

    @property
    def accuracy(self) -> float:
        return self.correct_count / self.total_count if self.total_count else 0.0


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (2.5 -> 3)."""
    return math.floor(value + 0.5)


def compute_performance(current: UserResponse, prior: List[UserResponse]) -> PerformanceSnapshot:
    """
    Performance snapshot taken when the current response is evaluated.

    correct_count covers prior responses only; total_count and the mean
    time include the current one. Missing time-spent values count as zero.
    """
    responses = list(prior) + [current]
    correct = sum(1 for r in prior if r.is_correct)
    total_time = sum(r.time_spent or 0 for r in responses)
    return PerformanceSnapshot(
        correct_count=correct,
        total_count=len(responses),
        average_time=total_time / len(responses),
    )


def fallback_feedback(response: UserResponse, question: Question) -> Dict[str, Any]:
    """Feedback used when the oracle's output cannot be decoded."""
    if response.is_correct:
        text = "Correct! Your answer matches the expected answer."
    else:
        text = f"Not quite. The correct answer is: {question.correct_answer}."
    if question.explanation:
        text = f"{text} {question.explanation}"

    return {
        "feedback_text": text,
        "score": 100 if response.is_correct else 0,
        "strengths": ["Correct answer"] if response.is_correct else ["Attempted the question"],
        "improvements": [] if response.is_correct else ["Review the correct answer and explanation"],
        "next_steps": ["Continue practicing similar questions"],
        "learning_path_recommendations": {
            "immediate": ["Review explanation"],
            "future": ["Practice more questions"],
            "resources": ["Study materials"],
        },
    }


@dataclass
class EvaluationOutcome:
    """Stored feedback plus the performance numbers reported to the caller."""
    feedback: Feedback
    performance: PerformanceSnapshot
    directive: str
    used_fallback: bool = False

    def performance_summary(self) -> Dict[str, Any]:
        return {
            "score": self.feedback.score,
            "accuracy": self.performance.accuracy,
            "averageTime": round_half_up(self.performance.average_time),
        }


class EvaluationStage:
    """Evaluates answers with the oracle, with a deterministic fallback."""

    TEMPERATURE = 0.4
    MAX_TOKENS = 1536

    def __init__(
        self,
        store,
        oracle,
        bus: Optional[AgentMessageBus] = None,
        parser: Optional[ResponseParser] = None,
        controller: Optional[AdaptiveDifficultyController] = None,
    ):
        self.store = store
        self.oracle = oracle
        self.bus = bus or AgentMessageBus(store)
        self.parser = parser or ResponseParser()
        self.controller = controller or AdaptiveDifficultyController()

    async def _load_response(self, response_id: str, session: Session, user_id: str) -> Tuple[UserResponse, Question]:
        row = await self.store.select_one(RESPONSES_TABLE, id=response_id)
        if not row or row.get("session_id") != session.id or row.get("user_id") != user_id:
            raise NotFoundError("Response not found")
        response = UserResponse.from_row(row)

        question_row = await self.store.select_one(QUESTIONS_TABLE, id=response.question_id)
        if not question_row:
            raise NotFoundError("Question for response not found")
        return response, Question.from_row(question_row)

    def build_prompt(
        self,
        session: Session,
        question: Question,
        response: UserResponse,
        performance: PerformanceSnapshot,
    ) -> str:
        objectives = ", ".join(session.objectives) if session.objectives else "General learning"
        options_line = f"ANSWER OPTIONS: {question.options}\n" if question.options else ""
        return f"""As an expert educational feedback specialist, provide comprehensive, personalized feedback for the following student response:

QUESTION: {question.question_text}
QUESTION TYPE: {question.question_type}
CORRECT ANSWER: {question.correct_answer}
STUDENT ANSWER: {response.answer}
IS CORRECT: {'Yes' if response.is_correct else 'No'}
TIME SPENT: {response.time_spent or 0} seconds
DIFFICULTY LEVEL: {question.difficulty_level}/5

LEARNING CONTEXT:
- Session: {session.title}
- Objectives: {objectives}
- Student Performance: {performance.correct_count}/{performance.total_count} correct answers
- Average Response Time: {round_half_up(performance.average_time)} seconds

{options_line}
Please provide detailed feedback that includes:

1. IMMEDIATE FEEDBACK: Whether the answer is correct/incorrect with brief explanation
2. DETAILED ANALYSIS: Why the answer is right/wrong, addressing misconceptions
3. STRENGTHS: What the student did well (even if incorrect)
4. AREAS FOR IMPROVEMENT: Specific areas to focus on
5. NEXT STEPS: Concrete actions for improvement
6. LEARNING PATH RECOMMENDATIONS: Suggested topics/resources for further study

FORMAT: Return a JSON object with these exact fields:
{{
  "feedback_text": "Main feedback paragraph",
  "score": number (0-100),
  "strengths": ["strength1", "strength2"],
  "improvements": ["improvement1", "improvement2"],
  "next_steps": ["step1", "step2"],
  "learning_path_recommendations": {{
    "immediate": ["topic1", "topic2"],
    "future": ["advanced_topic1", "advanced_topic2"],
    "resources": ["resource1", "resource2"]
  }}
}}

Make feedback constructive, encouraging, and actionable. Adapt tone to student's performance level."""

    def interpret(self, raw: str, response: UserResponse, question: Question) -> Tuple[Dict[str, Any], bool]:
        """
        Decode the oracle's feedback, or fall back.

        Returns:
            (feedback fields, whether the fallback was used)
        """
        try:
            decoded = self.parser.parse(raw)
            if not isinstance(decoded, dict):
                raise ParseError(f"Expected a JSON object, got {type(decoded).__name__}")
            try:
                generated = GeneratedFeedback.model_validate(decoded)
            except PydanticValidationError as e:
                raise ParseError(f"Feedback does not match schema: {e.error_count()} error(s)") from e
        except ParseError as e:
            logger.warning(f"⚠️ [FeedbackEvaluator] {e.message}; using fallback feedback for {response.id}")
            return fallback_feedback(response, question), True

        return generated.model_dump(), False

    async def run(self, session: Session, user_id: str, response_id: str) -> EvaluationOutcome:
        """
        Evaluate one response and persist the feedback.

        Raises:
            NotFoundError: response or its question is missing
            OracleError: no usable completion
            PersistenceError: feedback could not be stored
        """
        logger.info(f"📝 [FeedbackEvaluator] Session {session.id}: evaluating response {response_id}")
        response, question = await self._load_response(response_id, session, user_id)

        prior_rows = await self.store.select(
            RESPONSES_TABLE,
            filters={"user_id": user_id, "session_id": session.id},
            exclude={"id": response_id},
        )
        prior = [UserResponse.from_row(row) for row in prior_rows]

        await self.bus.publish_all([
            OutgoingMessage(session.id, FEEDBACK_EVALUATOR, CONTENT_GENERATOR, EVALUATION_STARTED, {
                "responseId": response_id,
                "questionType": question.question_type,
                "isCorrect": response.is_correct,
            }),
            OutgoingMessage(session.id, FEEDBACK_EVALUATOR, QUESTION_SETTER, RESPONSE_ANALYZED, {
                "responseId": response_id,
                "difficultyLevel": question.difficulty_level,
                "performanceIndicator": "correct" if response.is_correct else "incorrect",
            }),
        ])

        performance = compute_performance(response, prior)
        prompt = self.build_prompt(session, question, response, performance)
        raw = await self.oracle.complete(
            prompt,
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
            request_key=f"{FEEDBACK_EVALUATOR}:{response_id}:{uuid.uuid4().hex[:8]}",
        )
        fields, used_fallback = self.interpret(raw, response, question)

        rows = await self.store.insert(FEEDBACK_TABLE, {
            **fields,
            "response_id": response.id,
            "user_id": user_id,
            "agent_type": FEEDBACK_EVALUATOR,
        })
        feedback = Feedback.from_row(rows[0])

        directive = self.controller.recommend(feedback.score)
        await self.bus.publish_all([
            OutgoingMessage(session.id, FEEDBACK_EVALUATOR, CONTENT_GENERATOR, FEEDBACK_COMPLETE, {
                "feedbackId": feedback.id,
                "score": feedback.score,
                "needsRemediation": self.controller.needs_remediation(feedback.score),
                "learningGaps": feedback.improvements,
            }),
            OutgoingMessage(session.id, FEEDBACK_EVALUATOR, QUESTION_SETTER, PERFORMANCE_UPDATE, {
                "studentPerformance": {
                    "currentScore": feedback.score,
                    "overallAccuracy": performance.accuracy,
                    "averageResponseTime": performance.average_time,
                },
                "adaptationNeeded": directive,
                "suggestedDifficulty": self.controller.next_difficulty_level(question.difficulty_level, directive),
            }),
        ])

        logger.info(
            f"✅ [FeedbackEvaluator] Feedback {feedback.id}: score={feedback.score}, "
            f"accuracy={performance.accuracy:.2f}, directive={directive}"
            + (" (fallback)" if used_fallback else "")
        )
        return EvaluationOutcome(feedback, performance, directive, used_fallback)
