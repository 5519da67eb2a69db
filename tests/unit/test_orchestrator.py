"""
Unit Tests for SessionOrchestrator

Authentication, validation, ownership and status-code mapping around the
three stages.
"""

import asyncio
import json

import pytest

from agentic_tutor_pipeline.models import FEEDBACK_TABLE, QUESTIONS_TABLE, SESSIONS_TABLE
from agentic_tutor_pipeline.orchestrator import SessionLocks, SessionOrchestrator, bearer_token
from agentic_tutor_pipeline.errors import AuthError, OracleError

AUTH = "Bearer token-user-1"
OTHER_AUTH = "Bearer token-user-2"

QUESTIONS = json.dumps([
    {
        "question_text": "Where do the light reactions occur?",
        "question_type": "mcq",
        "options": ["Stroma", "Thylakoid membrane", "Nucleus", "Cytoplasm"],
        "correct_answer": "Thylakoid membrane",
        "explanation": "Photosystems are embedded there.",
    },
    {
        "question_text": "What does the Calvin cycle fix?",
        "question_type": "mcq",
        "options": ["Oxygen", "Carbon dioxide", "Nitrogen", "Water"],
        "correct_answer": "Carbon dioxide",
    },
])


class TestBearerToken:

    def test_extracts_token(self):
        assert bearer_token("Bearer abc.def") == "abc.def"
        assert bearer_token("bearer abc") == "abc"

    @pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer", "Bearer   "])
    def test_rejects_bad_headers(self, header):
        with pytest.raises(AuthError):
            bearer_token(header)


class TestSessionOrchestrator:

    @pytest.fixture
    def orchestrator(self, store, oracle, verifier):
        return SessionOrchestrator(store, oracle, verifier)

    # ==================== Authentication and validation ====================

    @pytest.mark.asyncio
    async def test_missing_authorization_is_401(self, orchestrator, oracle, seed):
        session = await seed.session()
        envelope = await orchestrator.run_content_stage(None, {
            "sessionId": session.id, "topic": "Cells", "learningObjectives": [], "difficultyLevel": 2,
        })
        assert envelope.status_code == 401
        assert envelope.body == {"success": False, "error": "Authorization header required", "error_type": "auth_error"}
        assert oracle.calls == []

    @pytest.mark.asyncio
    async def test_unknown_token_is_401(self, orchestrator):
        envelope = await orchestrator.create_session("Bearer forged", {"subjectId": "s", "title": "T"})
        assert envelope.status_code == 401
        assert envelope.body["error_type"] == "auth_error"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        None,
        ["not", "an", "object"],
        {"topic": "Cells", "learningObjectives": [], "difficultyLevel": 2},
        {"sessionId": "s", "topic": "Cells", "learningObjectives": [], "difficultyLevel": 9},
        {"sessionId": "s", "topic": "Cells", "difficultyLevel": 2},
        {"sessionId": "s", "topic": "Cells", "learningObjectives": [], "difficultyLevel": "3"},
        {"sessionId": "s", "topic": "Cells", "learningObjectives": [], "difficultyLevel": 2.0},
        {"sessionId": "s", "topic": "Cells", "learningObjectives": [], "difficultyLevel": True},
        {"sessionId": "s", "topic": 42, "learningObjectives": [], "difficultyLevel": 2},
        {"sessionId": "s", "topic": "Cells", "learningObjectives": "photosynthesis", "difficultyLevel": 2},
    ])
    async def test_invalid_content_body_is_400(self, orchestrator, oracle, body):
        envelope = await orchestrator.run_content_stage(AUTH, body)
        assert envelope.status_code == 400
        assert envelope.body["error_type"] == "validation_error"
        assert oracle.calls == []

    @pytest.mark.asyncio
    async def test_assessment_rejects_unknown_question_type(self, orchestrator, seed):
        session = await seed.session()
        envelope = await orchestrator.run_assessment_stage(AUTH, {
            "sessionId": session.id, "questionType": "essay", "numberOfQuestions": 3, "difficultyLevel": 2,
        })
        assert envelope.status_code == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides", [
        {"numberOfQuestions": True},
        {"numberOfQuestions": "3"},
        {"numberOfQuestions": 3.0},
        {"difficultyLevel": 2.0},
        {"contentId": 7},
    ])
    async def test_assessment_rejects_wrongly_typed_fields(self, orchestrator, oracle, seed, overrides):
        session = await seed.session()
        body = {"sessionId": session.id, "questionType": "mcq", "numberOfQuestions": 3, "difficultyLevel": 2}
        body.update(overrides)

        envelope = await orchestrator.run_assessment_stage(AUTH, body)

        assert envelope.status_code == 400
        assert envelope.body["error_type"] == "validation_error"
        assert oracle.calls == []

    @pytest.mark.asyncio
    async def test_session_of_other_user_is_404(self, orchestrator, oracle, seed):
        session = await seed.session()
        envelope = await orchestrator.run_content_stage(OTHER_AUTH, {
            "sessionId": session.id, "topic": "Cells", "learningObjectives": [], "difficultyLevel": 2,
        })
        assert envelope.status_code == 404
        assert envelope.body["error_type"] == "not_found"
        assert oracle.calls == []

    # ==================== Stage results ====================

    @pytest.mark.asyncio
    async def test_content_stage_success(self, orchestrator, oracle, seed):
        session = await seed.session()
        oracle.queue("Photosynthesis happens in chloroplasts.")

        envelope = await orchestrator.run_content_stage(AUTH, {
            "sessionId": session.id,
            "topic": "Photosynthesis",
            "learningObjectives": ["Understand light reactions"],
            "difficultyLevel": 3,
        })

        assert envelope.status_code == 200
        assert envelope.success
        assert envelope.body["content"]["difficulty_level"] == 3
        assert envelope.body["content"]["session_id"] == session.id

    @pytest.mark.asyncio
    async def test_oracle_failure_is_502(self, orchestrator, oracle, seed):
        session = await seed.session()
        oracle.queue(OracleError("Oracle timed out after 60s"))

        envelope = await orchestrator.run_content_stage(AUTH, {
            "sessionId": session.id, "topic": "Cells", "learningObjectives": [], "difficultyLevel": 2,
        })
        assert envelope.status_code == 502
        assert envelope.body["error_type"] == "oracle_error"

    @pytest.mark.asyncio
    async def test_unparseable_questions_is_502(self, orchestrator, store, oracle, seed):
        session = await seed.session()
        oracle.queue("Sorry, I cannot help with that.")

        envelope = await orchestrator.run_assessment_stage(AUTH, {
            "sessionId": session.id, "questionType": "mcq", "numberOfQuestions": 3, "difficultyLevel": 2,
        })
        assert envelope.status_code == 502
        assert envelope.body["error_type"] == "parse_error"
        assert store.tables[QUESTIONS_TABLE] == []

    @pytest.mark.asyncio
    async def test_unexpected_error_is_500(self, store, oracle, verifier, seed):
        class BrokenStage:
            async def run(self, *args, **kwargs):
                raise RuntimeError("boom")

        orchestrator = SessionOrchestrator(store, oracle, verifier, content_stage=BrokenStage())
        session = await seed.session()
        envelope = await orchestrator.run_content_stage(AUTH, {
            "sessionId": session.id, "topic": "Cells", "learningObjectives": [], "difficultyLevel": 2,
        })
        assert envelope.status_code == 500
        assert envelope.body == {"success": False, "error": "boom", "error_type": "internal_error"}

    # ==================== Answers, evaluation and progress ====================

    @pytest.mark.asyncio
    async def test_submit_answer_marks_correctness(self, orchestrator, seed):
        session = await seed.session()
        question = await seed.question(session)

        right = await orchestrator.submit_answer(AUTH, {
            "sessionId": session.id, "questionId": question.id, "answer": "Thylakoid membrane", "timeSpent": 12,
        })
        wrong = await orchestrator.submit_answer(AUTH, {
            "sessionId": session.id, "questionId": question.id, "answer": "thylakoid membrane",
        })

        assert right.body["response"]["is_correct"] is True
        assert right.body["response"]["time_spent"] == 12
        assert wrong.body["response"]["is_correct"] is False

    @pytest.mark.asyncio
    async def test_submit_answer_unknown_question_is_404(self, orchestrator, seed):
        session = await seed.session()
        envelope = await orchestrator.submit_answer(AUTH, {
            "sessionId": session.id, "questionId": "missing", "answer": "x",
        })
        assert envelope.status_code == 404

    @pytest.mark.asyncio
    async def test_evaluation_updates_progress_and_completes_session(self, orchestrator, store, oracle, seed):
        session = await seed.session()
        oracle.queue(QUESTIONS)
        questions = (await orchestrator.run_assessment_stage(AUTH, {
            "sessionId": session.id, "questionType": "mcq", "numberOfQuestions": 2, "difficultyLevel": 2,
        })).body["questions"]

        first = await orchestrator.submit_answer(AUTH, {
            "sessionId": session.id, "questionId": questions[0]["id"], "answer": "Stroma", "timeSpent": 20,
        })
        oracle.queue("unstructured")
        evaluated = await orchestrator.run_evaluation_stage(AUTH, {
            "sessionId": session.id, "responseId": first.body["response"]["id"],
        })

        assert evaluated.status_code == 200
        assert evaluated.body["feedback"]["score"] == 0
        assert evaluated.body["directive"] == "easier"
        assert evaluated.body["performance"] == {"score": 0, "accuracy": 0.0, "averageTime": 20}
        row = await store.select_one(SESSIONS_TABLE, id=session.id)
        assert row["progress"] == 50
        assert row["status"] == "active"

        second = await orchestrator.submit_answer(AUTH, {
            "sessionId": session.id, "questionId": questions[1]["id"], "answer": "Carbon dioxide", "timeSpent": 40,
        })
        oracle.queue("also unstructured")
        evaluated = await orchestrator.run_evaluation_stage(AUTH, {
            "sessionId": session.id, "responseId": second.body["response"]["id"],
        })

        assert evaluated.body["performance"]["accuracy"] == 0.0
        assert evaluated.body["performance"]["averageTime"] == 30
        row = await store.select_one(SESSIONS_TABLE, id=session.id)
        assert row["progress"] == 100
        assert row["status"] == "completed"
        assert row["completed_at"]
        assert len(store.tables[FEEDBACK_TABLE]) == 2

    @pytest.mark.asyncio
    async def test_evaluation_of_unknown_response_is_404(self, orchestrator, seed):
        session = await seed.session()
        envelope = await orchestrator.run_evaluation_stage(AUTH, {"sessionId": session.id, "responseId": "missing"})
        assert envelope.status_code == 404

    @pytest.mark.asyncio
    async def test_create_session_and_message_trail(self, orchestrator, oracle):
        created = await orchestrator.create_session(AUTH, {
            "subjectId": "subject-biology", "title": "Photosynthesis", "objectives": ["Light reactions"],
        })
        session = created.body["session"]
        assert session["user_id"] == "user-1"
        assert session["status"] == "active"
        assert session["progress"] == 0

        oracle.queue("Body")
        await orchestrator.run_content_stage(AUTH, {
            "sessionId": session["id"], "topic": "Photosynthesis", "learningObjectives": [], "difficultyLevel": 1,
        })

        trail = await orchestrator.list_agent_messages(AUTH, session["id"])
        assert [m["message_type"] for m in trail.body["messages"]][0] == "content_preview"
        assert len(trail.body["messages"]) == 3

        hidden = await orchestrator.list_agent_messages(OTHER_AUTH, session["id"])
        assert hidden.status_code == 404

    @pytest.mark.asyncio
    async def test_same_stage_calls_are_serialized(self, store, verifier, seed):
        active = []
        overlaps = []

        class SlowOracle:
            model = "test-model"

            async def complete(self, prompt, temperature, max_tokens, request_key=None):
                active.append(request_key)
                overlaps.append(len(active))
                await asyncio.sleep(0.01)
                active.pop()
                return "Body"

        orchestrator = SessionOrchestrator(store, SlowOracle(), verifier)
        session = await seed.session()
        body = {"sessionId": session.id, "topic": "Cells", "learningObjectives": [], "difficultyLevel": 2}

        results = await asyncio.gather(
            orchestrator.run_content_stage(AUTH, body),
            orchestrator.run_content_stage(AUTH, body),
        )
        assert all(r.status_code == 200 for r in results)
        assert max(overlaps) == 1
        assert len(orchestrator.locks) == 0


class TestSessionLocks:

    @pytest.mark.asyncio
    async def test_entry_dropped_after_release(self):
        locks = SessionLocks()
        async with locks.hold("session-1", "content_generator"):
            assert len(locks) == 1
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_entry_kept_while_waiters_remain(self):
        locks = SessionLocks()
        order = []

        async def worker(name):
            async with locks.hold("session-1", "feedback_evaluator"):
                order.append(name)
                await asyncio.sleep(0.01)

        await asyncio.gather(worker("first"), worker("second"))

        assert order == ["first", "second"]
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_entry_dropped_when_body_raises(self):
        locks = SessionLocks()
        with pytest.raises(RuntimeError):
            async with locks.hold("session-1", "question_setter"):
                raise RuntimeError("stage failed")
        assert len(locks) == 0
