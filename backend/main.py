"""
FastAPI Backend for the Agentic Tutor Pipeline

Provides REST endpoints for:
- Session creation and answer submission
- Content generator, question setter and feedback evaluator stages
- The inter-stage message trail of a session

Authentication, validation and stage sequencing live in SessionOrchestrator;
this module only maps HTTP onto it.
"""

from fastapi import FastAPI, Depends, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Any, Optional
import os
import sys
import time
import logging
import signal

# Add the agentic_tutor_pipeline package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)

package_src = os.path.join(project_root, 'agentic_tutor_pipeline', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from agentic_tutor_pipeline.config import PipelineSettings
from agentic_tutor_pipeline.oracle import OpenAIOracle
from agentic_tutor_pipeline.orchestrator import SessionOrchestrator, StageEnvelope
from agentic_tutor_pipeline.store import InMemoryStore, SupabaseStore

from lib.logger import setup_logging, get_logger
from lib.supabase_client import get_supabase_client
from lib.auth import SupabaseIdentityVerifier

settings = PipelineSettings.from_env()

# Setup logging with colors and structured output
setup_logging(level=getattr(logging, settings.log_level, logging.INFO), use_colors=True)

logger = get_logger("backend.main")

SERVICE_NAME = "Agentic Tutor Pipeline API"
SERVICE_VERSION = "1.0.0"

_orchestrator: Optional[SessionOrchestrator] = None


def build_orchestrator(settings: PipelineSettings) -> SessionOrchestrator:
    """Wire store, oracle and identity verifier into an orchestrator."""
    if settings.store_backend == "memory":
        supabase = None
        store = InMemoryStore()
        logger.warning("Using in-memory store - data is lost on restart")
    else:
        supabase = get_supabase_client(settings)
        store = SupabaseStore(supabase)

    verifier = SupabaseIdentityVerifier(supabase_client=supabase, jwt_secret=settings.supabase_jwt_secret)
    oracle = OpenAIOracle(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout=settings.oracle_timeout_seconds,
        max_retries=settings.oracle_max_retries,
        backoff_seconds=settings.oracle_backoff_seconds,
    )
    return SessionOrchestrator(store, oracle, verifier)


def get_orchestrator() -> SessionOrchestrator:
    """Orchestrator for this process, built on first use."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator(settings)
        logger.success("Orchestrator ready", data={
            "store": settings.store_backend,
            "model": settings.openai_model,
            "oracle_timeout_s": settings.oracle_timeout_seconds,
            "oracle_retries": settings.oracle_max_retries,
        })
    return _orchestrator


# Initialize FastAPI app
app = FastAPI(
    title=SERVICE_NAME,
    description="Content generation, assessment and evaluation stages over a shared learning session",
    version=SERVICE_VERSION,
)

# Pre-flight requests are answered here with permissive headers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    if request.method != "OPTIONS":
        logger.request(request.method, request.url.path)
    response = await call_next(request)
    if request.method != "OPTIONS":
        logger.response(response.status_code, request.url.path, duration=time.time() - start_time)
    return response


# ==================== Helper Functions ====================

async def read_body(request: Request) -> Any:
    """Decoded JSON body, or None when it is missing or malformed."""
    try:
        return await request.json()
    except ValueError:
        return None


def to_response(envelope: StageEnvelope) -> JSONResponse:
    return JSONResponse(status_code=envelope.status_code, content=envelope.body)


# ==================== API Endpoints ====================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
    }


@app.post("/api/sessions")
async def create_session(
    request: Request,
    authorization: Optional[str] = Header(None),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """Create a learning session for the authenticated user."""
    return to_response(await orchestrator.create_session(authorization, await read_body(request)))


@app.post("/api/agents/content-generator")
async def content_generator(
    request: Request,
    authorization: Optional[str] = Header(None),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """Generate learning content for a topic."""
    return to_response(await orchestrator.run_content_stage(authorization, await read_body(request)))


@app.post("/api/agents/question-setter")
async def question_setter(
    request: Request,
    authorization: Optional[str] = Header(None),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """Generate a batch of assessment questions."""
    return to_response(await orchestrator.run_assessment_stage(authorization, await read_body(request)))


@app.post("/api/responses")
async def submit_response(
    request: Request,
    authorization: Optional[str] = Header(None),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """Record an answer to a question."""
    return to_response(await orchestrator.submit_answer(authorization, await read_body(request)))


@app.post("/api/agents/feedback-evaluator")
async def feedback_evaluator(
    request: Request,
    authorization: Optional[str] = Header(None),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """Evaluate a submitted answer and return feedback plus performance."""
    return to_response(await orchestrator.run_evaluation_stage(authorization, await read_body(request)))


@app.get("/api/sessions/{session_id}/agent-messages")
async def agent_messages(
    session_id: str,
    authorization: Optional[str] = Header(None),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """Inter-stage message trail of a session, oldest first."""
    return to_response(await orchestrator.list_agent_messages(authorization, session_id))


if __name__ == "__main__":
    import uvicorn

    def handle_exit(*args):
        """Handle graceful shutdown."""
        logger.section("SERVER SHUTDOWN", {"reason": "signal received"})
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
