# tests/conftest.py
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from offers.config import EngineSettings
from offers.models import OfferFilters
from offers.services.coordinator_service import CoordinatorAggregator, parse_book
from offers.services.reconcile_service import ReconcileService
from offers.stores.offer_store import OfferStateStore

NOW = 1_700_000_000_000          # 2023-11-14T22:13:20Z
HOUR = 3_600_000


class FakeClock:
    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now


class FakeSource:
    """Order book stand-in: returns rows, or raises `error` when set."""

    def __init__(self, source_id, rows=None, error=None):
        self.source_id = source_id
        self.rows = list(rows or [])
        self.error = error
        self.calls = 0
        self.last_filters = None

    async def fetch_offers(self, filters: OfferFilters = None):
        self.calls += 1
        self.last_filters = filters
        if self.error is not None:
            raise self.error
        return parse_book(self.rows, self.source_id)


class FakeNotifier:
    def __init__(self, ready=True):
        self.ready = ready
        self.sent = []              # texts, in order
        self.deleted = []           # handles
        self.fail_send_for = set()  # texts that raise on send
        self.fail_delete = False
        self.delete_result = True
        self._n = 0

    def is_ready(self):
        return self.ready

    async def send(self, text):
        if text in self.fail_send_for:
            raise RuntimeError("chat unavailable")
        self._n += 1
        self.sent.append(text)
        return f"m{self._n}"

    async def delete(self, handle):
        self.deleted.append(handle)
        if self.fail_delete:
            raise RuntimeError("message not found")
        return self.delete_result


def row(offer_id, *, currency=1, type_=0, expires_at=None, **extra):
    r = {"id": offer_id, "currency": currency, "type": type_,
         "expires_at": expires_at if expires_at is not None else NOW + 6 * HOUR}
    r.update(extra)
    return r


def text_of(offer, settings, now):
    return f"offer:{offer.id}"


async def no_sleep(_s):
    return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return EngineSettings(
        coordinators="a,b",
        target_currencies="USD",
        send_delay_ms=0,
        data_dir=str(tmp_path),
        onion_url="http://robosats.onion",
    )


@pytest.fixture
def store(settings, clock):
    return OfferStateStore(settings.store_path, fallback_ttl_ms=settings.fallback_ttl_ms, clock=clock)


@pytest.fixture
def sources():
    return {"a": FakeSource("a"), "b": FakeSource("b")}


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def aggregator(sources):
    return CoordinatorAggregator(lambda sid: sources[sid])


@pytest.fixture
def service(aggregator, store, notifier, clock):
    return ReconcileService(aggregator, store, notifier, formatter=text_of, clock=clock, sleep=no_sleep)
