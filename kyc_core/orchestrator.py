"""
KYC Interview Orchestrator
==========================
Owns the lifecycle of verification interviews:
- Session storage (in-memory, optionally persisted as JSON)
- Deterministic opening turn (no model call)
- Turn processing with per-session serialization
- Retry policy and the safe fallback decision on upstream failure
- Terminal-state integrity and bounded interview length
- Advisory frame checks feeding the environment log
"""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

import aiofiles
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from . import config
from .errors import GatewayError, RateLimited, ResolverError, SessionNotFound, SessionTerminal, Unreachable
from .llm_gateway import LLMGateway
from .prompts import (
    FALLBACK_PROMPTS, FINAL_TURN_REINFORCEMENT, GREETINGS, INSTRUCTION_VERSION, JSON_REINFORCEMENT,
    UNVERIFIED_CLOSINGS, localized, render_instructions,
)
from .providers import build_provider
from .resolver import ModelResolver
from .structs import (
    Decision, EnvironmentEntry, EnvironmentVerdict, KycSession, PriorDecision,
    RespondentUtterance, SystemInstruction, TurnOutcome,
)
from .vision import VisionCheck

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SessionStore:
    """Session storage with optional JSON persistence. No directory means non-durable mode."""

    def __init__(self, data_dir: Optional[Path] = None):
        self._sessions: Dict[str, KycSession] = {}
        self._write_locks: Dict[str, asyncio.Lock] = {}
        self.data_dir = Path(data_dir) if data_dir else None
        if self.data_dir:
            self.data_dir.mkdir(parents=True, exist_ok=True)

    def load_all(self) -> int:
        """Load persisted sessions on startup."""
        if not self.data_dir:
            return 0
        for file in self.data_dir.glob("*.json"):
            try:
                data = json.loads(file.read_text(encoding="utf-8"))
                session = KycSession.model_validate(data)
                self._sessions[session.id] = session
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load session {file}: {e}")
        logger.info(f"Loaded {len(self._sessions)} persisted sessions")
        return len(self._sessions)

    def add(self, session: KycSession):
        self._sessions[session.id] = session

    def get(self, session_id: str) -> Optional[KycSession]:
        return self._sessions.get(session_id)

    async def save(self, session: KycSession) -> bool:
        """
        Persist session to disk. A no-op in memory mode.
        A failed write is logged and the in-memory record stays authoritative.
        """
        if not self.data_dir:
            return False
        snapshot = session.model_dump_json(indent=2)
        lock = self._write_locks.setdefault(session.id, asyncio.Lock())
        async with lock:
            try:
                async with aiofiles.open(self.data_dir / f"{session.id}.json", "w", encoding="utf-8") as f:
                    await f.write(snapshot)
            except OSError as e:
                logger.error(f"❌ Failed to persist session {session.id}: {e}")
                return False
        return True


class DecisionEngine:
    """
    The interview state machine: ACTIVE -> {ACTIVE, APPROVED, REJECTED}.
    The model decides the verdict; this class guarantees the protocol around it.
    """

    def __init__(
        self,
        store: SessionStore,
        resolver,
        gateway,
        vision=None,
        max_turns: int = config.MAX_RESPONDENT_TURNS,
        max_attempts: int = config.MAX_ATTEMPTS,
        retry_wait: float = config.RETRY_WAIT_SECONDS,
        default_language: str = config.DEFAULT_LANGUAGE,
        provider=None,
    ):
        self.store = store
        self.resolver = resolver
        self.gateway = gateway
        self.vision = vision
        self.max_turns = max_turns
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait
        self.default_language = default_language
        self.provider = provider
        self._turn_locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        return self._turn_locks.setdefault(session_id, asyncio.Lock())

    async def aclose(self):
        """Release upstream connections. Safe to call when no provider was wired."""
        if self.provider is not None:
            await self.provider.aclose()

    def inspect(self, session_id: str) -> KycSession:
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session {session_id} not found")
        return session

    @staticmethod
    def _outcome(session: KycSession, text: str, fallback: bool = False) -> TurnOutcome:
        return TurnOutcome(
            session_id=session.id,
            next_question=text,
            status=session.status,
            risk_flag=session.risk_flag,
            language_code=session.language,
            fallback=fallback,
        )

    # ── OPENING TURN ──
    async def start(self, language: Optional[str] = None) -> TurnOutcome:
        """Create a session with the fixed opening question. Never calls the model."""
        language = (language or "").strip() or self.default_language
        greeting = localized(GREETINGS, language)

        opening = Decision(next_question=greeting, kyc_status="CONTINUE", risk_flag=False, language_code=language)
        session = KycSession(
            language=language,
            history=[
                SystemInstruction(version=INSTRUCTION_VERSION, text=render_instructions(language, self.max_turns)),
                PriorDecision(decision=opening),
            ],
        )
        self.store.add(session)
        await self.store.save(session)

        logger.info(f"Created Session: {session.id} ({language})")
        return self._outcome(session, greeting)

    # ── RESPONDENT TURN ──
    async def process(self, session_id: str, utterance: str) -> TurnOutcome:
        session = self.inspect(session_id)
        utterance = (utterance or "").strip()

        async with self._lock_for(session_id):
            if session.is_terminal:
                raise SessionTerminal(session.id, session.status)

            final_turn = session.respondent_turns() + 1 >= self.max_turns
            try:
                decision = await self._decide(session, utterance, final_turn)
            except (GatewayError, ResolverError) as e:
                logger.warning(f"[{session_id}] Upstream failure ({type(e).__name__}: {e}); returning fallback")
                return self._outcome(session, localized(FALLBACK_PROMPTS, session.language), fallback=True)

            if decision.language_code and decision.language_code != session.language:
                logger.warning(f"[{session_id}] Model answered in '{decision.language_code}', keeping '{session.language}'")
            decision = decision.model_copy(update={"language_code": session.language})

            if final_turn and decision.kyc_status == "CONTINUE":
                logger.warning(f"[{session_id}] Turn limit reached without a verdict; closing as REJECTED")
                decision = Decision(
                    next_question=localized(UNVERIFIED_CLOSINGS, session.language),
                    kyc_status="REJECTED",
                    risk_flag=decision.risk_flag,
                    language_code=session.language,
                )

            session.history.append(RespondentUtterance(text=utterance))
            session.history.append(PriorDecision(decision=decision))
            session.status = decision.session_status()
            if decision.risk_flag is not None:
                session.risk_flag = decision.risk_flag
            session.updated_at = datetime.now()
            await self.store.save(session)

        logger.info(
            f"[{session_id}] Respondent: \"{utterance}\" -> Investigator: \"{decision.next_question}\" "
            f"({session.status}, risk={session.risk_flag})"
        )
        return self._outcome(session, decision.next_question)

    async def _decide(self, session: KycSession, utterance: str, final_turn: bool) -> Decision:
        instructions = session.instructions.text if session.instructions else None
        reinforcement = FINAL_TURN_REINFORCEMENT if final_turn else JSON_REINFORCEMENT

        # Transient failures only; a vanished endpoint re-resolves on the next attempt
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, max=10),
            retry=retry_if_exception_type((RateLimited, Unreachable)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                endpoint = await self.resolver.resolve_or_default()
                decision = await self.gateway.send(
                    endpoint,
                    instructions,
                    session.conversation(),
                    utterance,
                    reinforcement=reinforcement,
                )
        return decision

    # ── ENVIRONMENT SIDE CHANNEL ──
    async def analyze_frame(
        self, session_id: str, image_bytes: bytes, mime_type: str = "image/jpeg"
    ) -> Optional[EnvironmentVerdict]:
        """Advisory only: may append to the environment log, never touches status or history."""
        session = self.inspect(session_id)
        if self.vision is None:
            return None

        verdict = await self.vision.analyze(image_bytes, mime_type)
        if verdict is None or verdict.warning_kind == "NONE":
            return verdict

        if session.is_terminal:
            logger.info(f"[{session_id}] Frame warning {verdict.warning_kind} after verdict; not logged")
            return verdict

        session.environment_log.append(EnvironmentEntry(warning_kind=verdict.warning_kind, message=verdict.warning))
        await self.store.save(session)
        logger.info(f"[{session_id}] Environment warning: {verdict.warning_kind} ({verdict.warning})")
        return verdict


def build_engine() -> DecisionEngine:
    """Wire the engine from configuration. Raises ConfigurationError when credentials are missing."""
    provider = build_provider(config.PROVIDER)
    resolver = ModelResolver(provider, fallback_model=config.DEFAULT_MODEL)
    gateway = LLMGateway(provider, resolver)

    store = SessionStore(config.SESSIONS_DIR)
    store.load_all()

    return DecisionEngine(
        store,
        resolver,
        gateway,
        vision=VisionCheck(gateway, resolver, endpoint=config.VISION_MODEL),
        provider=provider,
    )
