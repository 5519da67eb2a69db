"""
Request Models

Pydantic models for the JSON bodies the orchestrator accepts. Field names
follow the client's camelCase; attributes are snake_case.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class StageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, strict=True)


class CreateSessionRequest(StageRequest):
    subject_id: str = Field(alias="subjectId", min_length=1)
    title: str = Field(min_length=1)
    objectives: List[str] = Field(default_factory=list)


class ContentStageRequest(StageRequest):
    session_id: str = Field(alias="sessionId", min_length=1)
    topic: str = Field(min_length=1)
    learning_objectives: List[str] = Field(alias="learningObjectives")
    difficulty_level: int = Field(alias="difficultyLevel", ge=1, le=5)
    content_type: str = Field(default="explanation", alias="contentType", min_length=1)


class AssessmentStageRequest(StageRequest):
    session_id: str = Field(alias="sessionId", min_length=1)
    content_id: Optional[str] = Field(default=None, alias="contentId")
    question_type: Literal["mcq", "open"] = Field(alias="questionType")
    number_of_questions: int = Field(alias="numberOfQuestions", ge=1, le=20)
    difficulty_level: int = Field(alias="difficultyLevel", ge=1, le=5)


class SubmitAnswerRequest(StageRequest):
    session_id: str = Field(alias="sessionId", min_length=1)
    question_id: str = Field(alias="questionId", min_length=1)
    answer: str = Field(min_length=1)
    time_spent: float = Field(default=0, alias="timeSpent", ge=0)


class EvaluationStageRequest(StageRequest):
    response_id: str = Field(alias="responseId", min_length=1)
    session_id: str = Field(alias="sessionId", min_length=1)
