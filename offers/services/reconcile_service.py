# offers/services/reconcile_service.py
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional, Set

from offers.cancellation import CancellationToken
from offers.config import EngineSettings
from offers.enums import CycleStep
from offers.formatter import format_offer
from offers.models import AggregationResult, CycleReport, NotificationRecord, Offer, OfferId
from offers.services.coordinator_service import CoordinatorAggregator
from offers.services.notifier import Notifier
from offers.stores.offer_store import OfferStateStore
from utils.logger import logger
from utils.time import parse_ts_ms, utc_ms


class ReconcileService:
    """
    One reconciliation cycle, strictly ordered:

        aggregate -> new -> inactive -> evict -> persist

    - new: untracked offers are notified once and recorded
    - inactive: tracked offers missing from a source we did reach are retracted
      and dropped; this runs on the pre-eviction tracked set, otherwise an
      expired record would lose its handle before its message is deleted
    - evict: whatever expired and could not be judged decays silently
    - persist: a single save of the whole store

    The cancellation token is honoured only at step boundaries. When it is
    seen, the steps already completed are persisted (once) and the cycle ends.
    """

    def __init__(self,
                 aggregator: CoordinatorAggregator,
                 store: OfferStateStore,
                 notifier: Notifier,
                 *,
                 formatter: Callable[[Offer, EngineSettings, int], str] = format_offer,
                 clock: Callable[[], int] = utc_ms,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
        self._aggregator = aggregator
        self._store = store
        self._notifier = notifier
        self._format = formatter
        self._clock = clock
        self._sleep = sleep

    @staticmethod
    def resolve_expiry(offer: Offer, now: int, settings: EngineSettings) -> int:
        ts = parse_ts_ms(offer.expires_at)
        return ts if ts is not None else now + settings.fallback_ttl_ms

    async def run_cycle(self,
                        settings: EngineSettings,
                        token: Optional[CancellationToken] = None) -> CycleReport:
        token = token or CancellationToken()
        now = self._clock()
        report = CycleReport(started_at=now)
        try:
            if self._should_abort(token, CycleStep.AGGREGATE, report):
                return report

            logger.info(f"Checking for new offers ({', '.join(c.code for c in settings.target_currencies)})...")
            agg = await self._aggregator.fetch(settings.coordinators, settings.filters)
            report.reachable = set(agg.reachable)
            report.offers_seen = len(agg.offers)
            # snapshot before anything is added or evicted
            tracked_before = self._store.tracked_ids()

            if self._should_abort(token, CycleStep.NEW, report):
                return report
            await self._process_new(agg.offers, settings, now, report)

            if self._should_abort(token, CycleStep.INACTIVE, report):
                return self._persist_partial(report)
            deferred = await self._process_inactive(tracked_before, agg, settings, report)

            if self._should_abort(token, CycleStep.EVICT, report):
                return self._persist_partial(report)
            # offers still listed this cycle are active, whatever their reported expiry
            present = {o.id for o in agg.offers}
            report.evicted = self._store.evict_expired(now, persist=False, keep=deferred | present)

            self._store.save()
            report.persisted = True
            logger.info(
                f"Cycle done: sent={len(report.sent)} send_failures={len(report.send_failures)} "
                f"inactive={len(report.inactive)} evicted={report.evicted} "
                f"reachable={len(report.reachable)}/{len(settings.coordinators)}"
            )
            return report
        finally:
            report.finished_at = self._clock()

    # ---- steps ----------------------------------------------------------------------
    async def _process_new(self,
                           offers: List[Offer],
                           settings: EngineSettings,
                           now: int,
                           report: CycleReport) -> None:
        if not self._notifier.is_ready():
            logger.warning("Notifier not ready, skipping notifications this cycle")
            report.send_skipped = True
            return

        fresh: List[Offer] = []
        seen: Set[OfferId] = set()
        for offer in offers:
            # the same offer may be listed by several coordinators
            if offer.id in seen or self._store.is_tracked(offer.id):
                continue
            seen.add(offer.id)
            fresh.append(offer)

        if not fresh:
            logger.info("No new offers found")
            return
        logger.info(f"Found {len(fresh)} new offer(s)")

        for i, offer in enumerate(fresh):
            if i and settings.send_delay_ms:
                await self._sleep(settings.send_delay_ms / 1000.0)
            try:
                handle = await self._notifier.send(self._format(offer, settings, now))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Failed to notify offer {offer.id} ({offer.source_id}): {e}")
                report.send_failures.append(offer.id)
                continue
            self._store.put(offer.id, NotificationRecord(
                expires_at=self.resolve_expiry(offer, now, settings),
                message_handle=str(handle) if handle is not None else None,
                sent_at=now,
                source_id=offer.source_id,
            ))
            report.sent.append(offer.id)

        if report.sent:
            logger.info(f"Successfully sent {len(report.sent)} offer notification(s)")

    async def _process_inactive(self,
                                tracked_before: Set[OfferId],
                                agg: AggregationResult,
                                settings: EngineSettings,
                                report: CycleReport) -> Set[OfferId]:
        """Returns ids deferred to the next cycle; eviction must leave them alone."""
        deferred: Set[OfferId] = set()
        if not agg.reachable:
            logger.info("No coordinator reachable, inactive-offer check skipped")
            return deferred

        present = {o.id for o in agg.offers}
        ready = self._notifier.is_ready()

        for offer_id in sorted(tracked_before - present, key=str):
            rec = self._store.get(offer_id)
            if rec is None:
                continue
            # unknown origin (legacy records, or a coordinator no longer configured):
            # any reachable coordinator is enough
            known = rec.source_id in settings.coordinators
            judged = rec.source_id in agg.reachable if known else True
            if not judged:
                continue

            if settings.delete_inactive and rec.message_handle:
                if not ready:
                    deferred.add(offer_id)
                    report.deferred.append(offer_id)
                    continue
                if await self._delete_message(offer_id, rec.message_handle):
                    report.deleted.append(offer_id)
                else:
                    report.delete_failures.append(offer_id)

            self._store.clear_handle(offer_id)
            self._store.remove(offer_id)
            report.inactive.append(offer_id)

        if report.inactive:
            logger.info(f"Removed {len(report.inactive)} inactive offer(s) (taken or cancelled)")
        if deferred:
            logger.warning(f"Notifier not ready, {len(deferred)} retraction(s) deferred to next cycle")
        return deferred

    async def _delete_message(self, offer_id: OfferId, handle: str) -> bool:
        """One attempt, never retried; failures are logged and swallowed."""
        try:
            ok = bool(await self._notifier.delete(handle))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Failed to delete notification for offer {offer_id} (handle={handle}): {e}")
            return False
        if not ok:
            logger.warning(f"Notification for offer {offer_id} could not be deleted (handle={handle})")
        return ok

    # ---- abort ----------------------------------------------------------------------
    def _should_abort(self, token: CancellationToken, step: CycleStep, report: CycleReport) -> bool:
        if token.cancelled:
            report.aborted_at = step
            logger.info(f"Check aborted before {step.value} step ({token.reason})")
            return True
        return False

    def _persist_partial(self, report: CycleReport) -> CycleReport:
        if self._store.dirty:
            self._store.save()
            report.persisted = True
        return report
