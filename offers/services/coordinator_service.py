# offers/services/coordinator_service.py
from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from infra import HttpPort
from infra.http_client import HttpError
from offers.errors import MalformedPayloadError, SourceError
from offers.models import AggregationResult, Offer, OfferFilters, SourceOutcome
from utils.logger import logger


class Source(Protocol):
    """One coordinator's order book. Raises SourceError on failure."""
    source_id: str

    async def fetch_offers(self, filters: Optional[OfferFilters] = None) -> List[Offer]: ...


def parse_book(payload: Any, source_id: str) -> List[Offer]:
    """
    /book/ must be a JSON list. Anything else is malformed, which is not
    the same thing as an empty book.
    """
    if not isinstance(payload, list):
        raise MalformedPayloadError("invalid response format", source=source_id,
                                    got=type(payload).__name__)
    offers: List[Offer] = []
    for row in payload:
        if not isinstance(row, dict):
            raise MalformedPayloadError("invalid book row", source=source_id, got=type(row).__name__)
        try:
            offers.append(Offer.from_row(row, source_id))
        except ValueError as e:
            logger.warning(f"[{source_id}] skipping book row without usable id: {e}")
    return offers


class CoordinatorSource:
    """
    RoboSats coordinator reached through the federation proxy:
    /mainnet/<coordinator>/api/book/ and /info/.
    """

    def __init__(self, coordinator: str, http: HttpPort, *, network: str = "mainnet") -> None:
        self.source_id = coordinator
        self._http = http
        self._base_path = f"/{network}/{coordinator}/api"

    async def fetch_offers(self, filters: Optional[OfferFilters] = None) -> List[Offer]:
        params: Dict[str, Any] = {}
        if filters is not None and len(filters.currencies) == 1:
            params["currency"] = next(iter(filters.currencies))
        if filters is not None and filters.offer_type is not None:
            params["type"] = filters.offer_type
        try:
            payload = await self._http.get_json(f"{self._base_path}/book/", params=params or None)
        except HttpError as e:
            raise SourceError(e.short_reason, source=self.source_id) from e
        return parse_book(payload, self.source_id)

    async def get_info(self) -> Dict[str, Any]:
        try:
            payload = await self._http.get_json(f"{self._base_path}/info/")
        except HttpError as e:
            raise SourceError(e.short_reason, source=self.source_id) from e
        if not isinstance(payload, dict):
            raise MalformedPayloadError("invalid info payload", source=self.source_id)
        return payload


async def probe_info(sources: Iterable[CoordinatorSource]) -> Dict[str, Any]:
    """Info from the first coordinator that answers."""
    for src in sources:
        try:
            return await src.get_info()
        except SourceError as e:
            logger.warning(f"Failed to get info from {src.source_id} ({e}), trying next...")
    raise SourceError("Failed to get info from all coordinators")


class CoordinatorAggregator:
    """
    Fans out one fetch per source, concurrently, and merges the results.

    A source counts as reachable when it returned a structurally valid book,
    however many offers it held. Failures never propagate: the source is
    simply left out of `reachable` for this cycle. No retries here.
    """

    def __init__(self,
                 source_factory: Callable[[str], Source],
                 *,
                 timeout_s: Optional[float] = None) -> None:
        self._factory = source_factory
        self._sources: Dict[str, Source] = {}
        self._timeout_s = timeout_s

    def source(self, source_id: str) -> Source:
        src = self._sources.get(source_id)
        if src is None:
            src = self._factory(source_id)
            self._sources[source_id] = src
        return src

    async def _fetch_one(self, source_id: str, filters: Optional[OfferFilters]) -> tuple[SourceOutcome, List[Offer]]:
        t0 = time.monotonic()
        try:
            coro = self.source(source_id).fetch_offers(filters)
            if self._timeout_s:
                offers = await asyncio.wait_for(coro, timeout=self._timeout_s)
            else:
                offers = await coro
            if not isinstance(offers, list):
                raise MalformedPayloadError("invalid response", source=source_id)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            return SourceOutcome(source_id, ok=False, duration_ms=_elapsed_ms(t0), error="timeout"), []
        except SourceError as e:
            return SourceOutcome(source_id, ok=False, duration_ms=_elapsed_ms(t0), error=e.msg or str(e)), []
        except Exception as e:
            logger.exception(f"[{source_id}] unexpected fetch failure: {e}")
            return SourceOutcome(source_id, ok=False, duration_ms=_elapsed_ms(t0),
                                 error=f"{type(e).__name__}: {e}"), []

        # tag with the coordinator that actually answered
        for o in offers:
            o.source_id = source_id
        return SourceOutcome(source_id, ok=True, offers=len(offers), duration_ms=_elapsed_ms(t0)), offers

    async def fetch(self,
                    sources: Iterable[str],
                    filters: Optional[OfferFilters] = None) -> AggregationResult:
        source_ids = list(dict.fromkeys(sources))
        t0 = time.monotonic()
        logger.info(f"Fetching from {len(source_ids)} coordinator(s) in parallel...")

        results = await asyncio.gather(*(self._fetch_one(s, filters) for s in source_ids))

        all_offers: List[Offer] = []
        reachable = set()
        outcomes: List[SourceOutcome] = []
        for outcome, offers in results:
            outcomes.append(outcome)
            if not outcome.ok:
                logger.warning(f"  {outcome.source_id}: ERROR - {outcome.error} ({outcome.duration_ms}ms)")
                continue
            reachable.add(outcome.source_id)
            all_offers.extend(offers)
            logger.info(f"  {outcome.source_id}: {outcome.offers} offers ({outcome.duration_ms}ms)")

        logger.info(
            f"Total: {len(all_offers)} offers from {len(reachable)}/{len(source_ids)} "
            f"coordinator(s) in {_elapsed_ms(t0)}ms"
        )

        if filters is not None:
            kept = [o for o in all_offers if filters.matches(o)]
            if len(kept) != len(all_offers):
                logger.info(f"Filtered to {len(kept)} offers matching target filters")
            all_offers = kept

        return AggregationResult(offers=all_offers, reachable=reachable, outcomes=outcomes)


def _elapsed_ms(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)
