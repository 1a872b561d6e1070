"""Shared fakes for the KYC test-suite."""

import os
import sys
from unittest.mock import AsyncMock, MagicMock

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from kyc_core.orchestrator import DecisionEngine, SessionStore
from kyc_core.structs import Decision, ModelInfo


def decision(status="CONTINUE", question="Who recommended this investment to you?", risk=False, language=None):
    return Decision(next_question=question, kyc_status=status, risk_flag=risk, language_code=language)


def model(name, *capabilities):
    return ModelInfo(name=name, capabilities=frozenset(capabilities or ("generateContent",)))


def make_engine(send_side_effect=None, store=None, vision=None, **kwargs):
    """DecisionEngine with a stubbed resolver and gateway. Retries do not sleep."""
    resolver = MagicMock()
    resolver.resolve_or_default = AsyncMock(return_value="test-model")

    gateway = MagicMock()
    gateway.send = AsyncMock(side_effect=send_side_effect, return_value=decision())

    kwargs.setdefault("max_attempts", 2)
    kwargs.setdefault("retry_wait", 0)
    engine = DecisionEngine(store or SessionStore(), resolver, gateway, vision=vision, **kwargs)
    return engine, gateway
