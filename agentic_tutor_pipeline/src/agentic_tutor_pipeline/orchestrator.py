"""
Session Orchestrator

Request-handling front of the pipeline. Every operation:
1. verifies the bearer token with the injected identity verifier
2. validates the JSON body against its request model
3. loads the session (it must exist and belong to the principal)
4. runs the stage under a per-(session, stage) lock
5. returns an envelope: {"success": True, ...} or the failure envelope
   {"success": False, "error", "error_type"} with the error's status code

Session progress is kept here, not in the stages: after each successful
evaluation it is recomputed as answered questions over total questions.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from agentic_tutor_pipeline.assessment_stage import AssessmentStage
from agentic_tutor_pipeline.content_stage import ContentGenerationStage
from agentic_tutor_pipeline.errors import AuthError, NotFoundError, PipelineError, ValidationError
from agentic_tutor_pipeline.evaluation_stage import EvaluationStage, round_half_up
from agentic_tutor_pipeline.message_bus import AgentMessageBus
from agentic_tutor_pipeline.models import (
    SESSIONS_TABLE,
    SESSION_ACTIVE,
    SESSION_COMPLETED,
    QUESTIONS_TABLE,
    RESPONSES_TABLE,
    CONTENT_GENERATOR,
    QUESTION_SETTER,
    FEEDBACK_EVALUATOR,
    Question,
    Session,
    UserResponse,
)
from agentic_tutor_pipeline.schemas import (
    AssessmentStageRequest,
    ContentStageRequest,
    CreateSessionRequest,
    EvaluationStageRequest,
    SubmitAnswerRequest,
)

logger = logging.getLogger(__name__)


@dataclass
class StageEnvelope:
    """Response body plus the HTTP status it should be sent with."""
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return bool(self.body.get("success"))

    @classmethod
    def ok(cls, **payload) -> "StageEnvelope":
        return cls(200, {"success": True, **payload})

    @classmethod
    def failure(cls, error: PipelineError) -> "StageEnvelope":
        return cls(error.status_code, error.to_envelope())


class SessionLocks:
    """
    In-process advisory locks keyed by (session id, stage tag).

    An entry lives only while some caller holds or waits for it.
    """

    def __init__(self):
        self._locks: Dict[tuple, asyncio.Lock] = {}
        self._users: Dict[tuple, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, session_id: str, stage: str):
        key = (session_id, stage)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


def bearer_token(authorization: Optional[str]) -> str:
    """Extract the token from an "Authorization: Bearer <token>" header."""
    if not authorization:
        raise AuthError("Authorization header required")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Invalid authorization header format")
    return token.strip()


def validate_body(model: Type[BaseModel], body: Any) -> BaseModel:
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(body)
    except PydanticValidationError as e:
        problems = []
        for err in e.errors():
            location = ".".join(str(part) for part in err["loc"]) or "body"
            problems.append(f"{location}: {err['msg']}")
        raise ValidationError("Invalid request: " + "; ".join(problems)) from e


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SessionOrchestrator:
    """Exposes the three stages (and session bookkeeping) as request handlers."""

    def __init__(
        self,
        store,
        oracle,
        identity_verifier,
        bus: Optional[AgentMessageBus] = None,
        content_stage: Optional[ContentGenerationStage] = None,
        assessment_stage: Optional[AssessmentStage] = None,
        evaluation_stage: Optional[EvaluationStage] = None,
    ):
        self.store = store
        self.identity_verifier = identity_verifier
        self.bus = bus or AgentMessageBus(store)
        self.content_stage = content_stage or ContentGenerationStage(store, oracle, self.bus)
        self.assessment_stage = assessment_stage or AssessmentStage(store, oracle, self.bus)
        self.evaluation_stage = evaluation_stage or EvaluationStage(store, oracle, self.bus)
        self.locks = SessionLocks()

    # ==================== Shared steps ====================

    async def authenticate(self, authorization: Optional[str]) -> str:
        """Verified principal id for the request."""
        token = bearer_token(authorization)
        principal_id = await self.identity_verifier.verify(token)
        if not principal_id:
            raise AuthError("Invalid or expired token")
        return principal_id

    async def load_session(self, session_id: str, principal_id: str) -> Session:
        row = await self.store.select_one(SESSIONS_TABLE, id=session_id)
        if not row or row.get("user_id") != principal_id:
            raise NotFoundError("Session not found")
        return Session.from_row(row)

    async def _handle(
        self,
        operation: str,
        authorization: Optional[str],
        handler: Callable[[str], Awaitable[StageEnvelope]],
    ) -> StageEnvelope:
        try:
            principal_id = await self.authenticate(authorization)
            return await handler(principal_id)
        except PipelineError as e:
            log = logger.warning if e.status_code < 500 else logger.error
            log(f"❌ [Orchestrator] {operation} failed ({e.error_type}): {e.message}")
            return StageEnvelope.failure(e)
        except Exception as e:
            logger.exception(f"❌ [Orchestrator] {operation} failed unexpectedly: {e}")
            return StageEnvelope(500, {"success": False, "error": str(e), "error_type": "internal_error"})

    # ==================== Stage operations ====================

    async def run_content_stage(self, authorization: Optional[str], body: Any) -> StageEnvelope:
        async def handler(principal_id: str) -> StageEnvelope:
            request = validate_body(ContentStageRequest, body)
            session = await self.load_session(request.session_id, principal_id)
            async with self.locks.hold(session.id, CONTENT_GENERATOR):
                artifact = await self.content_stage.run(
                    session,
                    principal_id,
                    topic=request.topic,
                    learning_objectives=request.learning_objectives,
                    difficulty_level=request.difficulty_level,
                    content_type=request.content_type,
                )
            return StageEnvelope.ok(content=artifact.to_dict())

        return await self._handle("content stage", authorization, handler)

    async def run_assessment_stage(self, authorization: Optional[str], body: Any) -> StageEnvelope:
        async def handler(principal_id: str) -> StageEnvelope:
            request = validate_body(AssessmentStageRequest, body)
            session = await self.load_session(request.session_id, principal_id)
            async with self.locks.hold(session.id, QUESTION_SETTER):
                questions = await self.assessment_stage.run(
                    session,
                    principal_id,
                    question_type=request.question_type,
                    number_of_questions=request.number_of_questions,
                    difficulty_level=request.difficulty_level,
                    content_id=request.content_id,
                )
            return StageEnvelope.ok(questions=[q.to_dict() for q in questions])

        return await self._handle("assessment stage", authorization, handler)

    async def run_evaluation_stage(self, authorization: Optional[str], body: Any) -> StageEnvelope:
        async def handler(principal_id: str) -> StageEnvelope:
            request = validate_body(EvaluationStageRequest, body)
            session = await self.load_session(request.session_id, principal_id)
            async with self.locks.hold(session.id, FEEDBACK_EVALUATOR):
                outcome = await self.evaluation_stage.run(session, principal_id, request.response_id)
            await self.refresh_progress(session, principal_id)
            return StageEnvelope.ok(
                feedback=outcome.feedback.to_dict(),
                performance=outcome.performance_summary(),
                directive=outcome.directive,
            )

        return await self._handle("evaluation stage", authorization, handler)

    # ==================== Session bookkeeping ====================

    async def create_session(self, authorization: Optional[str], body: Any) -> StageEnvelope:
        async def handler(principal_id: str) -> StageEnvelope:
            request = validate_body(CreateSessionRequest, body)
            rows = await self.store.insert(SESSIONS_TABLE, {
                "user_id": principal_id,
                "subject_id": request.subject_id,
                "title": request.title,
                "objectives": request.objectives,
                "status": SESSION_ACTIVE,
                "progress": 0,
                "started_at": utc_now(),
            })
            session = Session.from_row(rows[0])
            logger.info(f"💾 [Orchestrator] Created session {session.id} for {principal_id}")
            return StageEnvelope.ok(session=session.to_dict())

        return await self._handle("create session", authorization, handler)

    async def submit_answer(self, authorization: Optional[str], body: Any) -> StageEnvelope:
        async def handler(principal_id: str) -> StageEnvelope:
            request = validate_body(SubmitAnswerRequest, body)
            session = await self.load_session(request.session_id, principal_id)
            question_row = await self.store.select_one(QUESTIONS_TABLE, id=request.question_id)
            if not question_row or question_row.get("session_id") != session.id:
                raise NotFoundError("Question not found")
            question = Question.from_row(question_row)

            rows = await self.store.insert(RESPONSES_TABLE, {
                "question_id": question.id,
                "session_id": session.id,
                "user_id": principal_id,
                "answer": request.answer,
                "is_correct": request.answer == question.correct_answer,
                "time_spent": request.time_spent,
            })
            response = UserResponse.from_row(rows[0])
            return StageEnvelope.ok(response=response.to_dict())

        return await self._handle("submit answer", authorization, handler)

    async def list_agent_messages(self, authorization: Optional[str], session_id: str) -> StageEnvelope:
        async def handler(principal_id: str) -> StageEnvelope:
            session = await self.load_session(session_id, principal_id)
            messages = await self.bus.history(session.id)
            return StageEnvelope.ok(messages=[m.to_dict() for m in messages])

        return await self._handle("list agent messages", authorization, handler)

    async def refresh_progress(self, session: Session, principal_id: str) -> Optional[float]:
        """
        Recompute progress as answered/total questions for the session.

        Failures are logged; the evaluation result has already been stored.
        """
        try:
            questions = await self.store.select(QUESTIONS_TABLE, filters={"session_id": session.id})
            responses = await self.store.select(
                RESPONSES_TABLE, filters={"session_id": session.id, "user_id": principal_id}
            )
            question_ids = {q["id"] for q in questions}
            answered = {r["question_id"] for r in responses} & question_ids
            progress = round_half_up(100 * len(answered) / len(question_ids)) if question_ids else 0

            values: Dict[str, Any] = {"progress": progress}
            if progress >= 100 and session.status != SESSION_COMPLETED:
                values["status"] = SESSION_COMPLETED
                values["completed_at"] = utc_now()
            await self.store.update(SESSIONS_TABLE, values, {"id": session.id})
        except PipelineError as e:
            logger.warning(f"⚠️ [Orchestrator] Progress update for {session.id} failed: {e.message}")
            return None

        logger.info(f"📊 [Orchestrator] Session {session.id} progress: {progress}%")
        return progress
