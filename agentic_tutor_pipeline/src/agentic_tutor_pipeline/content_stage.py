"""
Content Generation Stage

Produces one learning artifact for a topic, announces it to the question
setter and hands the learning context to the feedback evaluator.
"""

import logging
import math
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from agentic_tutor_pipeline.errors import OracleError
from agentic_tutor_pipeline.message_bus import AgentMessageBus, OutgoingMessage
from agentic_tutor_pipeline.models import (
    CONTENT_TABLE,
    CONTENT_GENERATOR,
    QUESTION_SETTER,
    FEEDBACK_EVALUATOR,
    CONTENT_PREVIEW,
    CONTENT_READY,
    LEARNING_CONTEXT,
    Artifact,
    Session,
)

logger = logging.getLogger(__name__)

CHARS_PER_MINUTE = 200


def estimate_read_time(content: str) -> int:
    """Minutes to read, at ~200 characters per minute (0 for empty text)."""
    return math.ceil(len(content or "") / CHARS_PER_MINUTE)


class ContentGenerationStage:
    """Generates explanatory content with the oracle and stores it."""

    TEMPERATURE = 0.7
    MAX_TOKENS = 2048

    def __init__(self, store, oracle, bus: Optional[AgentMessageBus] = None):
        self.store = store
        self.oracle = oracle
        self.bus = bus or AgentMessageBus(store)

    def build_prompt(
        self,
        topic: str,
        learning_objectives: List[str],
        difficulty_level: int,
        content_type: str,
    ) -> str:
        objectives = ", ".join(learning_objectives) if learning_objectives else "General understanding"
        return f"""As an expert educational content creator, generate personalized learning material for the following:

Topic: {topic}
Learning Objectives: {objectives}
Difficulty Level: {difficulty_level}/5
Content Type: {content_type}

Please create comprehensive, engaging content that:
1. Clearly explains the core concepts
2. Uses real-world examples and analogies
3. Is appropriate for difficulty level {difficulty_level}
4. Includes interactive elements or thought-provoking questions
5. Follows best educational practices

Format the response as structured educational content with clear sections."""

    async def run(
        self,
        session: Session,
        user_id: str,
        topic: str,
        learning_objectives: List[str],
        difficulty_level: int,
        content_type: str = "explanation",
    ) -> Artifact:
        """
        Generate, persist and announce one artifact.

        Returns:
            The persisted Artifact

        Raises:
            OracleError: if the oracle produced no usable text
            PersistenceError: if the artifact could not be stored
        """
        logger.info(f"📚 [ContentGenerator] Session {session.id}: topic={topic!r}, difficulty={difficulty_level}")

        await self.bus.publish(
            session.id,
            CONTENT_GENERATOR,
            QUESTION_SETTER,
            CONTENT_PREVIEW,
            {
                "topic": topic,
                "learningObjectives": learning_objectives,
                "difficultyLevel": difficulty_level,
            },
        )

        prompt = self.build_prompt(topic, learning_objectives, difficulty_level, content_type)
        text = await self.oracle.complete(
            prompt,
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
            request_key=f"{CONTENT_GENERATOR}:{session.id}:{uuid.uuid4().hex[:8]}",
        )
        if not text or not text.strip():
            raise OracleError("Oracle returned no usable content")

        rows = await self.store.insert(CONTENT_TABLE, {
            "session_id": session.id,
            "user_id": user_id,
            "agent_type": CONTENT_GENERATOR,
            "content_type": content_type,
            "title": f"{topic} - {content_type}",
            "content": text,
            "difficulty_level": difficulty_level,
            "estimated_read_time": estimate_read_time(text),
            "metadata": {
                "learning_objectives": learning_objectives,
                "generated_at": datetime.now(timezone.utc).isoformat(),
                "model": getattr(self.oracle, "model", None),
            },
        })
        artifact = Artifact.from_row(rows[0])

        await self.bus.publish_all([
            OutgoingMessage(session.id, CONTENT_GENERATOR, QUESTION_SETTER, CONTENT_READY, {
                "contentId": artifact.id,
                "topic": topic,
                "difficultyLevel": difficulty_level,
                "contentLength": len(text),
            }),
            OutgoingMessage(session.id, CONTENT_GENERATOR, FEEDBACK_EVALUATOR, LEARNING_CONTEXT, {
                "contentId": artifact.id,
                "topic": topic,
                "learningObjectives": learning_objectives,
                "difficultyLevel": difficulty_level,
            }),
        ])

        logger.info(f"✅ [ContentGenerator] Stored content {artifact.id} ({artifact.estimated_read_time} min read)")
        return artifact
