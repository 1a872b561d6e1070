"""
KYC Async LLM Gateway
=====================
One model call per send():
- Serializes typed history plus the new input turn (with a JSON reinforcement clause)
- Bounds the call with a timeout
- Classifies upstream failures (RateLimited / Unreachable / Unauthorized / Malformed)
- Invalidates the resolver cache when the endpoint has vanished (HTTP 404)

Retries are the caller's business.
"""

import asyncio
import logging
from typing import List, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel

from . import config
from .errors import Malformed, ParseError, RateLimited, Unauthorized, Unreachable, UpstreamError
from .parser import parse_structured
from .prompts import JSON_REINFORCEMENT
from .providers import InlineImage, Message
from .structs import Decision, PriorDecision, RespondentUtterance, SystemInstruction, Turn

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def serialize_history(instructions: Optional[str], history: Sequence[Turn]) -> List[Message]:
    messages: List[Message] = []
    if instructions:
        messages.append(Message(role="system", text=instructions))
    for turn in history:
        if isinstance(turn, SystemInstruction):
            messages.append(Message(role="system", text=turn.text))
        elif isinstance(turn, RespondentUtterance):
            messages.append(Message(role="user", text=turn.text))
        elif isinstance(turn, PriorDecision):
            messages.append(Message(role="model", text=turn.decision.model_dump_json(exclude_none=True)))
    return messages


class LLMGateway:
    def __init__(self, provider, resolver, timeout: float = config.UPSTREAM_TIMEOUT_SECONDS):
        self.provider = provider
        self.resolver = resolver
        self.timeout = timeout

    async def send(
        self,
        endpoint: str,
        instructions: Optional[str],
        history: Sequence[Turn],
        new_input: str,
        response_model: Type[T] = Decision,
        reinforcement: str = JSON_REINFORCEMENT,
        image: Optional[InlineImage] = None,
    ) -> T:
        messages = serialize_history(instructions, history)
        messages.append(Message(role="user", text=f"{new_input} {reinforcement}".strip()))

        try:
            raw = await asyncio.wait_for(self.provider.generate(endpoint, messages, image=image), self.timeout)
        except asyncio.TimeoutError as e:
            raise Unreachable(f"{endpoint} did not answer within {self.timeout}s") from e
        except UpstreamError as e:
            raise self._classify(endpoint, e) from e

        try:
            return parse_structured(raw, response_model)
        except ParseError as e:
            logger.warning(f"Malformed output from {endpoint}: {e}. Raw Output: {(raw or '')[:100]}...")
            raise Malformed(str(e)) from e

    def _classify(self, endpoint: str, e: UpstreamError):
        status = e.status_code
        if status == 429:
            return RateLimited(f"Rate limit hit on {endpoint}")
        if status == 404:
            # Model deprecated or renamed upstream: force rediscovery
            self.resolver.invalidate(endpoint)
            return Unreachable(f"Endpoint {endpoint} no longer exists", endpoint_vanished=True)
        if status in (401, 403):
            return Unauthorized(f"Permission denied ({status}). API key likely invalid or restricted.")
        return Unreachable(str(e))
