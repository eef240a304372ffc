# backend/placescout/services/search/cascading_aggregator.py
"""
Cascading aggregation across place providers.

Providers are called strictly in tier order until enough unique places
have been gathered; the remaining providers are never invoked. Each call
goes through the RetryExecutor. All attempts against one provider share
``timeout_per_api_s``, bounded by the round deadline; a provider that runs
out of time is recorded as failed and the cascade moves on. Timeouts alone
never turn a round into an AggregationError. A parallel variant fans out
every provider at once when the caller asks for exhaustive coverage.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import time
from typing import Dict, List, Mapping, Optional, Protocol, Sequence

from ...core.config import Settings
from ...core.constants import PROVIDER_AI_FALLBACK
from ...core.exceptions import AggregationError, DeadlineExceededError, RetryExhaustedError
from ...core.request_context import operation_scope
from ...schemas.pipeline import AggregationQuery, AggregationResult
from ...schemas.places import CanonicalPlace, RawPlaceRecord
from .. import metrics
from ..base import BaseService
from ..canonical import filter_places, rating_then_name_key, to_canonical
from ..providers.base import PlaceProvider
from .deadline import Deadline, earliest
from .dedup import Deduplicator
from .retry import RetryExecutor

logger = logging.getLogger(__name__)


@dataclass
class CascadeConfig:
    min_results_threshold: int = 15
    max_results_per_api: int = 25
    timeout_per_api_s: float = 8.0
    deadline_s: float = 30.0
    priority_order: List[str] = field(
        default_factory=lambda: ["rapidapi", "geoapify", "opentripmap", "openstreetmap"]
    )
    fallback_provider: str = PROVIDER_AI_FALLBACK

    @classmethod
    def from_settings(cls, settings: Settings) -> "CascadeConfig":
        return cls(
            min_results_threshold=settings.aggregator_min_results_threshold,
            max_results_per_api=settings.aggregator_max_results_per_api,
            timeout_per_api_s=settings.aggregator_timeout_per_api_s,
            deadline_s=settings.aggregator_deadline_s,
            priority_order=settings.priority_order,
            fallback_provider=settings.fallback_provider,
        )


class TierOrderSource(Protocol):
    """Anything that can tell the aggregator the current provider call order."""

    def current_order(self) -> List[str]:
        ...


class CascadingAggregator(BaseService):
    def __init__(
        self,
        providers: Mapping[str, PlaceProvider],
        executor: RetryExecutor,
        config: Optional[CascadeConfig] = None,
        deduplicator: Optional[Deduplicator] = None,
        tier_source: Optional[TierOrderSource] = None,
    ) -> None:
        super().__init__()
        self.providers = dict(providers)
        self.executor = executor
        self.config = config or CascadeConfig()
        self.deduplicator = deduplicator or Deduplicator()
        self.tier_source = tier_source

    def set_tier_source(self, tier_source: Optional[TierOrderSource]) -> None:
        self.tier_source = tier_source

    def provider_order(self) -> List[str]:
        """Provider names in the order the cascade will try them."""
        if self.tier_source is not None:
            return [name for name in self.tier_source.current_order() if name in self.providers]
        fallback = self.config.fallback_provider
        order = [n for n in self.config.priority_order if n in self.providers and n != fallback]
        order += [n for n in self.providers if n not in order and n != fallback]
        if fallback in self.providers:
            order.append(fallback)
        return order

    @BaseService.measure_operation("aggregate")
    async def aggregate(
        self, query: AggregationQuery, deadline: Optional[Deadline] = None
    ) -> AggregationResult:
        """
        Run the provider cascade for ``query``.

        Raises:
            AggregationError: at least one provider was attempted and all of them failed
        """
        if query.exhaustive:
            return await self.aggregate_parallel(query, deadline)

        with operation_scope():
            started = time.perf_counter()
            round_deadline = earliest(deadline, Deadline(self.config.deadline_s))
            accumulated: List[CanonicalPlace] = []
            sources_used: List[str] = []
            failed: Dict[str, str] = {}
            timed_out: List[str] = []
            order = self.provider_order()
            skipped: List[str] = self._disabled(order)
            attempted = 0
            total_raw = 0
            duplicates = 0

            for name in order:
                provider = self.providers[name]
                reason = self._skip_reason(provider, query)
                if reason:
                    skipped.append(name)
                    logger.debug(f"Skipping provider {name}: {reason}")
                    continue

                attempted += 1
                try:
                    raw = await self._fetch(provider, query, round_deadline)
                except Exception as exc:
                    failed[name] = str(exc) or type(exc).__name__
                    if _timed_out(exc):
                        timed_out.append(name)
                    logger.warning(
                        "Provider call failed, continuing cascade",
                        extra={"event": "provider_failed", "provider": name, "error": failed[name]},
                    )
                    continue

                total_raw += len(raw)
                if not raw:
                    continue
                sources_used.append(name)
                candidates = self._canonicalize(raw)
                novel, dropped = self.deduplicator.merge_novel(candidates, accumulated)
                accumulated.extend(novel)
                duplicates += dropped
                logger.info(
                    f"Provider {name}: {len(raw)} raw, {len(novel)} novel, "
                    f"{len(accumulated)} accumulated"
                )

                if len(accumulated) >= self.config.min_results_threshold:
                    logger.info(
                        f"Sufficiency threshold {self.config.min_results_threshold} reached "
                        f"after {name}; remaining providers not called"
                    )
                    break

            self._raise_if_all_failed(attempted, failed, timed_out)

            return self._finalize(
                query,
                accumulated,
                sources_used=sources_used,
                total_raw=total_raw,
                duplicates=duplicates,
                failed=failed,
                skipped=skipped,
                started=started,
            )

    @BaseService.measure_operation("aggregate_parallel")
    async def aggregate_parallel(
        self, query: AggregationQuery, deadline: Optional[Deadline] = None
    ) -> AggregationResult:
        """Exhaustive variant: call every applicable provider concurrently, keep whatever succeeds."""
        with operation_scope():
            started = time.perf_counter()
            round_deadline = earliest(deadline, Deadline(self.config.deadline_s))
            applicable: List[str] = []
            order = self.provider_order()
            skipped: List[str] = self._disabled(order)
            for name in order:
                if self._skip_reason(self.providers[name], query):
                    skipped.append(name)
                else:
                    applicable.append(name)

            outcomes = await asyncio.gather(
                *(self._fetch(self.providers[n], query, round_deadline) for n in applicable),
                return_exceptions=True,
            )

            accumulated: List[CanonicalPlace] = []
            sources_used: List[str] = []
            failed: Dict[str, str] = {}
            timed_out: List[str] = []
            total_raw = 0
            for name, outcome in zip(applicable, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    failed[name] = str(outcome) or type(outcome).__name__
                    if _timed_out(outcome):
                        timed_out.append(name)
                    logger.warning(
                        "Provider call failed during parallel aggregation",
                        extra={"event": "provider_failed", "provider": name, "error": failed[name]},
                    )
                    continue
                total_raw += len(outcome)
                if outcome:
                    sources_used.append(name)
                    accumulated.extend(self._canonicalize(outcome))

            self._raise_if_all_failed(len(applicable), failed, timed_out)

            return self._finalize(
                query,
                accumulated,
                sources_used=sources_used,
                total_raw=total_raw,
                duplicates=0,
                failed=failed,
                skipped=skipped,
                started=started,
            )

    async def _fetch(
        self, provider: PlaceProvider, query: AggregationQuery, deadline: Optional[Deadline]
    ) -> List[RawPlaceRecord]:
        # All attempts of one provider share timeout_per_api_s, within the round deadline
        provider_deadline = earliest(deadline, Deadline(self.config.timeout_per_api_s))
        places = await self.executor.execute(
            provider.name,
            provider.fetch,
            query.latitude,
            query.longitude,
            query.radius_m,
            query.category_hint,
            query.location_name,
            timeout_s=self.config.timeout_per_api_s,
            deadline=provider_deadline,
        )
        metrics.record_provider_results(provider.name, len(places))
        return list(places)

    @staticmethod
    def _raise_if_all_failed(attempted: int, failed: Dict[str, str], timed_out: List[str]) -> None:
        """Providers that ran out of time are not failures; the round returns what it has."""
        if attempted and len(failed) == attempted and not timed_out:
            raise AggregationError(f"All {attempted} attempted providers failed", failures=failed)
        if timed_out:
            logger.warning(
                f"Providers timed out: {timed_out}",
                extra={"event": "provider_timeout", "providers": timed_out},
            )

    def _disabled(self, order: List[str]) -> List[str]:
        """Registered providers the tier source has left out of the order."""
        return [name for name in self.providers if name not in order]

    def _skip_reason(self, provider: PlaceProvider, query: AggregationQuery) -> Optional[str]:
        if not provider.is_configured:
            return "not configured"
        if provider.requires_location_name and not query.location_name:
            return "requires a location name"
        if query.sources and provider.name not in query.sources:
            return "excluded by source filter"
        return None

    def _canonicalize(self, raw: Sequence[RawPlaceRecord]) -> List[CanonicalPlace]:
        capped = raw[: self.config.max_results_per_api]
        return [to_canonical(record) for record in capped]

    def _finalize(
        self,
        query: AggregationQuery,
        accumulated: List[CanonicalPlace],
        *,
        sources_used: List[str],
        total_raw: int,
        duplicates: int,
        failed: Dict[str, str],
        skipped: List[str],
        started: float,
    ) -> AggregationResult:
        unique = self.deduplicator.dedupe_all(accumulated)
        duplicates += len(accumulated) - len(unique)
        filtered = filter_places(unique, query.categories, query.sources)
        filtered.sort(key=rating_then_name_key)
        places = filtered[: query.limit]
        elapsed = time.perf_counter() - started
        logger.info(
            f"Aggregation finished: {len(places)} places from {sources_used or 'no sources'} "
            f"({total_raw} raw, {duplicates} duplicates) in {elapsed:.2f}s"
        )
        return AggregationResult(
            places=places,
            sources_used=sources_used,
            total_raw_found=total_raw,
            duplicates_removed=duplicates,
            elapsed_s=elapsed,
            failed=failed,
            skipped=skipped,
        )


def _timed_out(exc: BaseException) -> bool:
    if isinstance(exc, DeadlineExceededError):
        return True
    if isinstance(exc, RetryExhaustedError):
        return isinstance(exc.last_error, (asyncio.TimeoutError, TimeoutError))
    return False
