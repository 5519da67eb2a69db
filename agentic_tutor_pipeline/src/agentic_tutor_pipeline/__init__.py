"""Agentic tutor pipeline: content, assessment and evaluation stages."""

from agentic_tutor_pipeline.assessment_stage import AssessmentStage
from agentic_tutor_pipeline.content_stage import ContentGenerationStage
from agentic_tutor_pipeline.difficulty_controller import AdaptiveDifficultyController
from agentic_tutor_pipeline.evaluation_stage import EvaluationStage
from agentic_tutor_pipeline.message_bus import AgentMessageBus
from agentic_tutor_pipeline.orchestrator import SessionOrchestrator, StageEnvelope
from agentic_tutor_pipeline.response_parser import ResponseParser

__all__ = [
    "AdaptiveDifficultyController",
    "AgentMessageBus",
    "AssessmentStage",
    "ContentGenerationStage",
    "EvaluationStage",
    "ResponseParser",
    "SessionOrchestrator",
    "StageEnvelope",
]
