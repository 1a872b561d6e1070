"""
KYC Interview Agent (Async)
===========================
Video-KYC fraud interview running on FastAPI + Asyncio.

Routes:
- POST /api/start          language -> opening question
- POST /api/process        respondent text -> next question / verdict
- POST /api/analyze-frame  webcam frame -> advisory environment verdict
- GET  /api/sessions/{id}  read-only session record

Speech capture and playback happen in the client; this service only sees text and frames.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, Field

from kyc_core.errors import ConfigurationError, SessionNotFound, SessionTerminal, UnsupportedLanguage
from kyc_core.orchestrator import DecisionEngine, build_engine
from kyc_core.structs import TurnOutcome

# Logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class StartRequest(BaseModel):
    language: Optional[str] = None


class ProcessRequest(BaseModel):
    sessionId: str
    userText: str = ""


def _wire(outcome: TurnOutcome) -> dict:
    """Response shape expected by the browser client."""
    return {
        "sessionId": outcome.session_id,
        "next_question": outcome.next_question,
        "language_code": outcome.language_code,
        "risk_flag": outcome.risk_flag,
        "kyc_status": outcome.kyc_status,
        "status": outcome.status,
        "fallback": outcome.fallback,
    }


def create_app(engine: Optional[DecisionEngine] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.engine is None:
            try:
                app.state.engine = build_engine()
            except ConfigurationError as e:
                logger.critical(f"❌ Refusing to serve: {e}")
                raise
        yield
        await app.state.engine.aclose()
        logger.info("Upstream connections closed")

    app = FastAPI(title="KYC Interview Agent", version="1.0.0", lifespan=lifespan)
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_engine(request: Request) -> DecisionEngine:
        return request.app.state.engine

    @app.get("/", response_class=HTMLResponse)
    async def index():
        return HTMLResponse("<h1>KYC Interview Agent is Active.</h1>")

    @app.post("/api/start")
    async def start_session(body: StartRequest, request: Request):
        try:
            outcome = await get_engine(request).start(body.language)
        except UnsupportedLanguage as e:
            raise HTTPException(400, str(e))
        return _wire(outcome)

    @app.post("/api/process")
    async def process_answer(body: ProcessRequest, request: Request):
        try:
            outcome = await get_engine(request).process(body.sessionId, body.userText)
        except SessionNotFound:
            raise HTTPException(404, "Session not found")
        except SessionTerminal as e:
            raise HTTPException(409, f"Session already {e.status}. Start a new session.")
        return _wire(outcome)

    @app.post("/api/analyze-frame")
    async def analyze_frame(
        request: Request,
        session_id: str = Form(...),
        frame: UploadFile = File(...),
    ):
        image = await frame.read()
        try:
            verdict = await get_engine(request).analyze_frame(session_id, image, frame.content_type or "image/jpeg")
        except SessionNotFound:
            raise HTTPException(404, "Session not found")
        return {"verdict": verdict.model_dump() if verdict else None}

    @app.get("/api/sessions/{session_id}")
    async def get_session(session_id: str, request: Request):
        try:
            session = get_engine(request).inspect(session_id)
        except SessionNotFound:
            raise HTTPException(404, "Session not found")
        return session.model_dump(mode="json")

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("kyc_server:app", host="0.0.0.0", port=8000)
