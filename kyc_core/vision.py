"""
Vision Check
============
Stateless, advisory classification of a single webcam frame. Uses the same
gateway and parser as the interview but no conversation history. Any failure
yields None so frame checks can never block an interview.
"""

import logging
from typing import Optional

from .errors import GatewayError, ResolverError
from .prompts import VISION_INSTRUCTIONS, VISION_REINFORCEMENT
from .providers import InlineImage
from .structs import EnvironmentVerdict

logger = logging.getLogger(__name__)


class VisionCheck:
    def __init__(self, gateway, resolver, endpoint: Optional[str] = None):
        self.gateway = gateway
        self.resolver = resolver
        self.endpoint = endpoint

    async def analyze(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> Optional[EnvironmentVerdict]:
        if not image_bytes:
            return None

        try:
            endpoint = self.endpoint or await self.resolver.resolve_or_default()
            return await self.gateway.send(
                endpoint,
                VISION_INSTRUCTIONS,
                [],
                "",
                response_model=EnvironmentVerdict,
                reinforcement=VISION_REINFORCEMENT,
                image=InlineImage(data=image_bytes, mime_type=mime_type),
            )
        except (GatewayError, ResolverError) as e:
            logger.warning(f"Frame analysis skipped: {e}")
            return None
