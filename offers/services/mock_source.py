# offers/services/mock_source.py
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from offers.config import Currency
from offers.models import Offer, OfferFilters
from offers.services.coordinator_service import parse_book
from utils.logger import logger

_MIN_EXPIRY_S = 30 * 60
_MAX_EXPIRY_S = 23 * 3600 + 59 * 60


class MockSource:
    """
    Fake coordinator for exercising the notifier without a reachable federation.
    Three public offers per target currency, stable ids, random expirations.
    """

    def __init__(self,
                 currencies: Sequence[Currency],
                 source_id: str = "mock",
                 *,
                 rng: Optional[random.Random] = None,
                 new_offer_probability: float = 0.0) -> None:
        self.source_id = source_id
        self._currencies = list(currencies)
        self._rng = rng or random.Random()
        self._new_p = new_offer_probability

    def _random_expiration(self) -> str:
        secs = self._rng.randint(_MIN_EXPIRY_S, _MAX_EXPIRY_S)
        return (datetime.now(timezone.utc) + timedelta(seconds=secs)).isoformat()

    def book_rows(self) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        now_iso = datetime.now(timezone.utc).isoformat()
        for idx, cur in enumerate(self._currencies):
            base = 1001 + idx * 3
            rows.extend([
                {"id": base, "status": 1, "type": 0, "currency": cur.id, "amount": "500000",
                 "has_range": False, "payment_method": "Bank Transfer", "premium": "2.5",
                 "price": 51250, "satoshis": 100000, "satoshis_now": 100000,
                 "maker_nick": "SatoshiTrader", "created_at": now_iso,
                 "expires_at": self._random_expiration()},
                {"id": base + 1, "status": 1, "type": 1, "currency": cur.id, "amount": "750000",
                 "has_range": False, "payment_method": "Cash", "premium": "3.0",
                 "price": 51500, "satoshis": 150000, "satoshis_now": 150000,
                 "maker_nick": "BitcoinSeller", "created_at": now_iso,
                 "expires_at": self._random_expiration()},
                {"id": base + 2, "status": 1, "type": 0, "currency": cur.id,
                 "has_range": True, "min_amount": "200000", "max_amount": "1000000",
                 "payment_method": "Zelle", "premium": "1.5",
                 "price": 51000, "satoshis": 200000, "satoshis_now": 200000,
                 "maker_nick": "RangeTrader", "created_at": now_iso,
                 "expires_at": self._random_expiration()},
            ])
        if self._currencies and self._rng.random() < self._new_p:
            cur = self._rng.choice(self._currencies)
            rows.append({
                "id": int(datetime.now(timezone.utc).timestamp() * 1000), "status": 1,
                "type": self._rng.choice((0, 1)), "currency": cur.id, "amount": "600000",
                "payment_method": "Bank Transfer", "premium": "2.0", "price": 51000,
                "satoshis": 120000, "maker_nick": f"NewRobot{self._rng.randint(0, 99)}",
                "created_at": now_iso, "expires_at": self._random_expiration(),
            })
            logger.info("[MOCK] Simulating new offer appearing")
        return rows

    async def fetch_offers(self, filters: Optional[OfferFilters] = None) -> List[Offer]:
        logger.info("[MOCK] Fetching order book")
        rows = [r for r in self.book_rows() if r.get("status") == 1]
        return parse_book(rows, self.source_id)
