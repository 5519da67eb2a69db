"""
Assessment Stage

Builds a batch of questions from a content artifact. The oracle is asked
for a JSON array; anything that does not decode into well-formed questions
fails the request. Invented questions are never substituted.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from agentic_tutor_pipeline.errors import ParseError, ValidationError
from agentic_tutor_pipeline.message_bus import AgentMessageBus, OutgoingMessage
from agentic_tutor_pipeline.models import (
    CONTENT_TABLE,
    QUESTIONS_TABLE,
    CONTENT_GENERATOR,
    QUESTION_SETTER,
    FEEDBACK_EVALUATOR,
    QUESTIONS_PREVIEW,
    ASSESSMENT_READY,
    QUESTIONS_READY,
    QUESTION_TYPES,
    Question,
    Session,
)
from agentic_tutor_pipeline.response_parser import ResponseParser

logger = logging.getLogger(__name__)

TYPE_ALIASES = {
    "mcq": "mcq",
    "multiple_choice": "mcq",
    "multiple choice": "mcq",
    "multiple-choice": "mcq",
    "open": "open",
    "open_ended": "open",
    "open-ended": "open",
    "open ended": "open",
    "short_answer": "open",
    "essay": "open",
}


class GeneratedQuestion(BaseModel):
    """Shape of one question item as returned by the oracle."""
    model_config = ConfigDict(extra="ignore")

    question_text: str = Field(min_length=1)
    question_type: Optional[str] = None
    options: Optional[List[str]] = None
    correct_answer: str = Field(min_length=1)
    explanation: Optional[str] = None
    difficulty_level: Optional[int] = Field(default=None, ge=1, le=5)
    points: Optional[int] = Field(default=None, ge=0)

    @field_validator("question_type", mode="before")
    @classmethod
    def normalize_type(cls, value):
        if value is None:
            return None
        normalized = TYPE_ALIASES.get(str(value).strip().lower())
        if normalized is None:
            raise ValueError(f"unknown question type {value!r}")
        return normalized

    @field_validator("correct_answer", mode="before")
    @classmethod
    def answer_as_text(cls, value):
        return value if value is None or isinstance(value, str) else str(value)

    @field_validator("options", mode="before")
    @classmethod
    def options_as_text(cls, value):
        if isinstance(value, list):
            return [item if isinstance(item, str) else str(item) for item in value]
        return value


class AssessmentStage:
    """Generates, validates and stores question batches."""

    TEMPERATURE = 0.3
    MAX_TOKENS = 2048
    MIN_MCQ_OPTIONS = 2

    def __init__(self, store, oracle, bus: Optional[AgentMessageBus] = None, parser: Optional[ResponseParser] = None):
        self.store = store
        self.oracle = oracle
        self.bus = bus or AgentMessageBus(store)
        self.parser = parser or ResponseParser()

    async def _load_content(self, content_id: Optional[str]) -> str:
        if not content_id:
            return ""
        row = await self.store.select_one(CONTENT_TABLE, id=content_id)
        if not row:
            logger.warning(f"⚠️ [QuestionSetter] Content {content_id} not found, generating without it")
            return ""
        return row.get("content") or ""

    def build_prompt(
        self,
        session: Session,
        content_text: str,
        question_type: str,
        number_of_questions: int,
        difficulty_level: int,
    ) -> str:
        content_block = f"CONTENT TO ASSESS:\n{content_text}\n\n" if content_text else ""
        objectives = ", ".join(session.objectives) if session.objectives else "General learning"
        options_hint = (
            "Array of exactly 4 answer choices; correct_answer must be one of them"
            if question_type == "mcq" else "null"
        )
        return f"""As an expert educational assessment creator, generate exactly {number_of_questions} high-quality {question_type} questions based on the following learning content:

{content_block}SESSION CONTEXT:
- Title: {session.title}
- Objectives: {objectives}
- Difficulty Level: {difficulty_level}/5
- Question Type: {question_type}

REQUIREMENTS:
1. Create questions that test understanding, not just memorization
2. Ensure questions are appropriate for difficulty level {difficulty_level}
3. Include clear, unambiguous correct answers
4. For mcq: Provide 4 options with plausible distractors
5. For open questions: Provide a model answer as correct_answer
6. Include explanations for correct answers

Format each question as a JSON object with these fields:
- question_text: The question
- question_type: "{question_type}"
- options: {options_hint}
- correct_answer: The correct answer
- explanation: Why this is correct
- difficulty_level: {difficulty_level}
- points: Suggested point value

Return ONLY a JSON array of question objects, no additional text."""

    def parse_questions(
        self,
        raw: str,
        question_type: str,
        number_of_questions: int,
        difficulty_level: int,
    ) -> List[Dict[str, Any]]:
        """
        Decode and validate the oracle's question batch.

        A single object is treated as a one-element batch. Missing type,
        difficulty and points fall back to the request values (points to 1).

        Raises:
            ParseError: if the output is not a non-empty array of valid questions
        """
        decoded = self.parser.parse(raw)
        if isinstance(decoded, dict):
            decoded = [decoded]
        if not isinstance(decoded, list):
            raise ParseError(f"Expected a JSON array of questions, got {type(decoded).__name__}")
        if not decoded:
            raise ParseError("Oracle returned an empty question list")

        if len(decoded) > number_of_questions:
            logger.warning(
                f"⚠️ [QuestionSetter] Oracle returned {len(decoded)} questions, keeping {number_of_questions}"
            )
            decoded = decoded[:number_of_questions]
        elif len(decoded) < number_of_questions:
            logger.warning(
                f"⚠️ [QuestionSetter] Oracle returned {len(decoded)} of {number_of_questions} requested questions"
            )

        items = []
        for index, entry in enumerate(decoded):
            if not isinstance(entry, dict):
                raise ParseError(f"Question {index + 1} is not an object")
            try:
                item = GeneratedQuestion.model_validate(entry)
            except PydanticValidationError as e:
                fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
                raise ParseError(f"Question {index + 1} is malformed ({fields})") from e

            resolved_type = item.question_type or question_type
            options = item.options
            if resolved_type == "mcq":
                if not options or len(options) < self.MIN_MCQ_OPTIONS:
                    raise ParseError(f"Question {index + 1} is multiple choice but has no options")
            else:
                options = None

            items.append({
                "question_text": item.question_text,
                "question_type": resolved_type,
                "options": options,
                "correct_answer": item.correct_answer,
                "explanation": item.explanation or "",
                "difficulty_level": item.difficulty_level or difficulty_level,
                "points": item.points if item.points is not None else 1,
            })
        return items

    async def run(
        self,
        session: Session,
        user_id: str,
        question_type: str,
        number_of_questions: int,
        difficulty_level: int,
        content_id: Optional[str] = None,
    ) -> List[Question]:
        """
        Generate and persist one question batch.

        Raises:
            OracleError: no usable completion
            ValidationError: unknown question type
            ParseError: completion is not a valid question array
            PersistenceError: batch could not be stored
        """
        logger.info(
            f"❓ [QuestionSetter] Session {session.id}: {number_of_questions} x {question_type}, "
            f"difficulty={difficulty_level}, content={content_id}"
        )
        if question_type not in QUESTION_TYPES:
            raise ValidationError(f"Unknown question type: {question_type}")
        content_text = await self._load_content(content_id)

        await self.bus.publish(
            session.id,
            QUESTION_SETTER,
            FEEDBACK_EVALUATOR,
            QUESTIONS_PREVIEW,
            {
                "questionType": question_type,
                "numberOfQuestions": number_of_questions,
                "difficultyLevel": difficulty_level,
                "contentId": content_id,
            },
        )

        prompt = self.build_prompt(session, content_text, question_type, number_of_questions, difficulty_level)
        raw = await self.oracle.complete(
            prompt,
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
            request_key=f"{QUESTION_SETTER}:{session.id}:{uuid.uuid4().hex[:8]}",
        )
        try:
            items = self.parse_questions(raw, question_type, number_of_questions, difficulty_level)
        except ParseError:
            logger.error(f"❌ [QuestionSetter] Could not parse questions: {(raw or '')[:200]}")
            raise

        generated_at = datetime.now(timezone.utc).isoformat()
        model = getattr(self.oracle, "model", None)
        rows = await self.store.insert(QUESTIONS_TABLE, [
            {
                **item,
                "session_id": session.id,
                "user_id": user_id,
                "agent_type": QUESTION_SETTER,
                "metadata": {
                    "content_id": content_id,
                    "generated_at": generated_at,
                    "model": model,
                },
            }
            for item in items
        ])
        questions = [Question.from_row(row) for row in rows]

        await self.bus.publish_all([
            OutgoingMessage(session.id, QUESTION_SETTER, CONTENT_GENERATOR, ASSESSMENT_READY, {
                "questionCount": len(questions),
                "questionTypes": sorted({q.question_type for q in questions}),
                "totalPoints": sum(q.points for q in questions),
            }),
            OutgoingMessage(session.id, QUESTION_SETTER, FEEDBACK_EVALUATOR, QUESTIONS_READY, {
                "questionIds": [q.id for q in questions],
                "difficultyLevel": difficulty_level,
                "assessmentType": question_type,
            }),
        ])

        logger.info(f"✅ [QuestionSetter] Stored {len(questions)} questions")
        return questions
