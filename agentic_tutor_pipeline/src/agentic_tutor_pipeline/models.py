"""
Pipeline Data Model

Dataclasses for the six record collections the pipeline reads and writes,
plus the table names, stage tags and message types shared across stages.
Rows come back from the store as plain dicts; from_row/to_dict convert.
"""

from dataclasses import dataclass, field, asdict
from typing import Optional, List, Dict, Any


# Table names
SESSIONS_TABLE = "learning_sessions"
CONTENT_TABLE = "generated_content"
QUESTIONS_TABLE = "questions"
RESPONSES_TABLE = "user_responses"
FEEDBACK_TABLE = "feedback"
MESSAGES_TABLE = "agent_communications"

# Stage tags
CONTENT_GENERATOR = "content_generator"
QUESTION_SETTER = "question_setter"
FEEDBACK_EVALUATOR = "feedback_evaluator"

# Message types
CONTENT_PREVIEW = "content_preview"
CONTENT_READY = "content_ready"
LEARNING_CONTEXT = "learning_context"
QUESTIONS_PREVIEW = "questions_preview"
ASSESSMENT_READY = "assessment_ready"
QUESTIONS_READY = "questions_ready"
EVALUATION_STARTED = "evaluation_started"
RESPONSE_ANALYZED = "response_analyzed"
FEEDBACK_COMPLETE = "feedback_complete"
PERFORMANCE_UPDATE = "performance_update"

MESSAGE_TYPES = (
    CONTENT_PREVIEW,
    CONTENT_READY,
    LEARNING_CONTEXT,
    QUESTIONS_PREVIEW,
    ASSESSMENT_READY,
    QUESTIONS_READY,
    EVALUATION_STARTED,
    RESPONSE_ANALYZED,
    FEEDBACK_COMPLETE,
    PERFORMANCE_UPDATE,
)

# Session statuses
SESSION_ACTIVE = "active"
SESSION_COMPLETED = "completed"

QUESTION_TYPES = ("mcq", "open")


def _pick(cls, row: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the keys the dataclass declares (embedded joins are dropped)."""
    names = cls.__dataclass_fields__.keys()
    return {k: v for k, v in row.items() if k in names}


@dataclass
class Session:
    """A learning engagement owned by one principal."""
    id: str
    user_id: str
    title: str = "Learning Session"
    subject_id: Optional[str] = None
    objectives: List[str] = field(default_factory=list)
    status: str = SESSION_ACTIVE
    progress: float = 0
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Session":
        data = _pick(cls, row)
        data["objectives"] = list(data.get("objectives") or [])
        data["progress"] = data.get("progress") or 0
        data["title"] = data.get("title") or "Learning Session"
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Artifact:
    """Generated learning content. Immutable once written."""
    id: str
    session_id: str
    user_id: str
    title: str
    content: str
    content_type: str
    difficulty_level: Optional[int] = None
    estimated_read_time: Optional[int] = None
    agent_type: str = CONTENT_GENERATOR
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Artifact":
        data = _pick(cls, row)
        data["metadata"] = data.get("metadata") or {}
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Question:
    """
    One assessment item.

    `mcq` questions carry an option list; `open` questions carry none.
    """
    id: str
    session_id: str
    user_id: str
    question_text: str
    question_type: str
    correct_answer: Optional[str] = None
    options: Optional[List[str]] = None
    explanation: Optional[str] = None
    difficulty_level: Optional[int] = None
    points: int = 1
    agent_type: str = QUESTION_SETTER
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Question":
        data = _pick(cls, row)
        data["metadata"] = data.get("metadata") or {}
        if data.get("points") is None:
            data["points"] = 1
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class UserResponse:
    """A submitted answer. is_correct is fixed at write time."""
    id: str
    question_id: str
    session_id: str
    user_id: str
    answer: str
    is_correct: bool = False
    time_spent: Optional[float] = None
    submitted_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "UserResponse":
        data = _pick(cls, row)
        data["is_correct"] = bool(data.get("is_correct"))
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LearningPath:
    """Learning-path recommendation attached to feedback."""
    immediate: List[str] = field(default_factory=list)
    future: List[str] = field(default_factory=list)
    resources: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "LearningPath":
        data = data or {}
        return cls(
            immediate=list(data.get("immediate") or []),
            future=list(data.get("future") or []),
            resources=list(data.get("resources") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Feedback:
    """Evaluation of one response. Immutable once written."""
    id: str
    response_id: str
    user_id: str
    feedback_text: str
    score: float
    strengths: List[str] = field(default_factory=list)
    improvements: List[str] = field(default_factory=list)
    next_steps: List[str] = field(default_factory=list)
    learning_path_recommendations: LearningPath = field(default_factory=LearningPath)
    agent_type: str = FEEDBACK_EVALUATOR
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Feedback":
        data = _pick(cls, row)
        data["strengths"] = list(data.get("strengths") or [])
        data["improvements"] = list(data.get("improvements") or [])
        data["next_steps"] = list(data.get("next_steps") or [])
        data["learning_path_recommendations"] = LearningPath.from_dict(
            data.get("learning_path_recommendations")
        )
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AgentMessage:
    """One entry of the inter-stage message trail."""
    id: str
    session_id: str
    from_agent: str
    to_agent: str
    message_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    status: str = "sent"
    created_at: Optional[str] = None
    processed_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "AgentMessage":
        data = _pick(cls, row)
        data["payload"] = data.get("payload") or {}
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
