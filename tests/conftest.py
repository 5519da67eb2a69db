"""
Shared fixtures: in-memory store, scripted oracle, static identity verifier.
"""

import os
import sys
from typing import Dict, List, Optional

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.join(project_root, "agentic_tutor_pipeline", "src"))
sys.path.insert(0, os.path.join(project_root, "backend"))

from agentic_tutor_pipeline.errors import AuthError
from agentic_tutor_pipeline.message_bus import AgentMessageBus
from agentic_tutor_pipeline.models import (
    SESSIONS_TABLE,
    QUESTIONS_TABLE,
    RESPONSES_TABLE,
    Question,
    Session,
    UserResponse,
)
from agentic_tutor_pipeline.store import InMemoryStore

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
TOKEN = "token-user-1"
OTHER_TOKEN = "token-user-2"


class ScriptedOracle:
    """Oracle double that replays queued completions and records every call."""

    model = "test-model"

    def __init__(self, *responses):
        self.responses: List = list(responses)
        self.calls: List[Dict] = []

    def queue(self, *responses):
        self.responses.extend(responses)

    async def complete(self, prompt: str, temperature: float, max_tokens: int, request_key: Optional[str] = None) -> str:
        self.calls.append({
            "prompt": prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "request_key": request_key,
        })
        if not self.responses:
            raise AssertionError("Oracle called more times than scripted")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class StaticIdentityVerifier:
    """Accepts a fixed set of tokens."""

    def __init__(self, tokens: Dict[str, str]):
        self.tokens = tokens

    async def verify(self, token: str) -> str:
        if token not in self.tokens:
            raise AuthError("Invalid or expired token")
        return self.tokens[token]


class UnwritableStore:
    """Store whose writes always fail."""

    async def insert(self, table, rows):
        raise RuntimeError("connection reset")


class Seeder:
    """Writes fixture records straight into the store."""

    def __init__(self, store: InMemoryStore):
        self.store = store

    async def session(self, user_id: str = USER_ID, **overrides) -> Session:
        row = {
            "user_id": user_id,
            "subject_id": "subject-biology",
            "title": "Plant Biology",
            "objectives": ["Understand light reactions", "Explain the Calvin cycle"],
            "status": "active",
            "progress": 0,
        }
        row.update(overrides)
        rows = await self.store.insert(SESSIONS_TABLE, row)
        return Session.from_row(rows[0])

    async def question(self, session: Session, **overrides) -> Question:
        row = {
            "session_id": session.id,
            "user_id": session.user_id,
            "question_text": "Where do the light reactions take place?",
            "question_type": "mcq",
            "options": ["Stroma", "Thylakoid membrane", "Nucleus", "Cytoplasm"],
            "correct_answer": "Thylakoid membrane",
            "explanation": "Photosystems sit in the thylakoid membrane.",
            "difficulty_level": 3,
            "points": 1,
            "metadata": {},
        }
        row.update(overrides)
        rows = await self.store.insert(QUESTIONS_TABLE, row)
        return Question.from_row(rows[0])

    async def response(self, question: Question, answer: str, time_spent: float = 30, user_id: Optional[str] = None) -> UserResponse:
        rows = await self.store.insert(RESPONSES_TABLE, {
            "question_id": question.id,
            "session_id": question.session_id,
            "user_id": user_id or question.user_id,
            "answer": answer,
            "is_correct": answer == question.correct_answer,
            "time_spent": time_spent,
        })
        return UserResponse.from_row(rows[0])


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def bus(store):
    return AgentMessageBus(store)


@pytest.fixture
def oracle():
    return ScriptedOracle()


@pytest.fixture
def verifier():
    return StaticIdentityVerifier({TOKEN: USER_ID, OTHER_TOKEN: OTHER_USER_ID})


@pytest.fixture
def seed(store):
    return Seeder(store)


@pytest.fixture
def failing_bus():
    """Bus whose every publish fails to persist."""
    return AgentMessageBus(UnwritableStore())
