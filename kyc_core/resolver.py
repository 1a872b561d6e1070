"""
Model Resolver
==============
Discovers which upstream generation endpoint to call and caches it for the
life of the process.

Selection is a ranked-predicate list: candidates are filtered by capability,
then each is ranked by the first preference rule it satisfies. Ties keep the
provider's listing order. Nothing here depends on a vendor's naming scheme
except the marker tuples passed into the default rules.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from .errors import DiscoveryUnreachable, NoCompatibleModel, ResolverError, UpstreamError
from .providers import GENERATE_CONTENT
from .structs import ModelInfo

logger = logging.getLogger(__name__)

FAST_MARKERS = ("flash", "instant", "lite", "turbo")
EXPERIMENTAL_MARKERS = ("preview", "exp", "experimental", "beta")


@dataclass(frozen=True)
class PreferenceRule:
    name: str
    matches: Callable[[ModelInfo], bool]


def _has_marker(model: ModelInfo, markers: Sequence[str]) -> bool:
    lowered = model.name.lower()
    return any(m in lowered for m in markers)


def default_preference(
    fast_markers: Sequence[str] = FAST_MARKERS,
    experimental_markers: Sequence[str] = EXPERIMENTAL_MARKERS,
) -> Tuple[PreferenceRule, ...]:
    """Fast stable models, then general stable models, then preview/experimental ones."""
    return (
        PreferenceRule("fast", lambda m: _has_marker(m, fast_markers) and not _has_marker(m, experimental_markers)),
        PreferenceRule("general", lambda m: not _has_marker(m, experimental_markers)),
        PreferenceRule("experimental", lambda m: True),
    )


def select_model(
    models: Sequence[ModelInfo],
    rules: Sequence[PreferenceRule],
    capability: str = GENERATE_CONTENT,
) -> str:
    candidates = [m for m in models if capability in m.capabilities]
    if not candidates:
        raise NoCompatibleModel(f"No models support '{capability}' ({len(models)} listed)")

    def rank(model: ModelInfo) -> int:
        for i, rule in enumerate(rules):
            if rule.matches(model):
                return i
        return len(rules)

    # sorted() is stable, so equal ranks keep listing order
    return sorted(candidates, key=rank)[0].name


class ModelResolver:
    """
    Process-wide cache of the selected endpoint id.
    `resolve()` discovers at most once per invalidation; concurrent callers
    share a single discovery round-trip.
    """

    def __init__(
        self,
        provider,
        rules: Optional[Sequence[PreferenceRule]] = None,
        capability: str = GENERATE_CONTENT,
        fallback_model: Optional[str] = None,
    ):
        self.provider = provider
        self.rules = tuple(rules) if rules is not None else default_preference()
        self.capability = capability
        self.fallback_model = fallback_model
        self._cached: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> Optional[str]:
        return self._cached

    async def resolve(self) -> str:
        endpoint = self._cached
        if endpoint:
            return endpoint

        async with self._lock:
            if self._cached:
                return self._cached

            logger.info("🔍 Scanning for available models...")
            try:
                models = await self.provider.list_models()
            except UpstreamError as e:
                raise DiscoveryUnreachable(f"Model discovery failed: {e}") from e

            endpoint = select_model(models, self.rules, self.capability)
            self._cached = endpoint
            logger.info(f"✅ Connected to Model: {endpoint}")
            return endpoint

    async def resolve_or_default(self) -> str:
        """resolve(), degrading to the configured safe default. The default is never cached."""
        try:
            return await self.resolve()
        except ResolverError as e:
            if not self.fallback_model:
                raise
            logger.error(f"❌ Model Discovery Failed: {e}. Using default '{self.fallback_model}'")
            return self.fallback_model

    def invalidate(self, stale: Optional[str] = None) -> bool:
        """
        Drop the cached endpoint so the next resolve() rediscovers.
        With `stale` given this is a compare-and-set: the cache is only cleared
        if it still holds that id, so a late invalidation cannot discard a
        freshly resolved endpoint. Repeated calls are harmless.
        """
        if stale is not None and self._cached != stale:
            return False
        if self._cached is not None:
            logger.warning(f"Invalidating cached model '{self._cached}'")
        self._cached = None
        return True
