# offers/models.py
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Set, FrozenSet, Mapping, Union

from offers.enums import CycleStep

OfferId = Union[int, str]


def normalize_offer_id(raw: Any) -> OfferId:
    """
    Offer ids arrive as ints from coordinators but as str keys from JSON;
    integer-like values are folded to int so both compare equal.
    """
    if raw is None or isinstance(raw, bool):
        raise ValueError(f"invalid offer id: {raw!r}")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    s = str(raw).strip()
    if not s:
        raise ValueError("empty offer id")
    if s.lstrip("-").isdigit():
        return int(s)
    return s


def _opt_int(x: Any) -> Optional[int]:
    if x is None or isinstance(x, bool):
        return None
    try:
        return int(x)
    except (TypeError, ValueError):
        return None


@dataclass
class Offer:
    id: OfferId
    source_id: str
    expires_at: Any = None          # raw value as reported by the coordinator

    # --- presentation only, passed through ---
    type: Optional[int] = None      # 0 = BUY, 1 = SELL
    currency: Optional[int] = None  # coordinator currency id
    currency_code: Optional[str] = None
    amount: Optional[str] = None
    has_range: bool = False
    min_amount: Optional[str] = None
    max_amount: Optional[str] = None
    price: Optional[float] = None
    premium: Optional[str] = None
    payment_method: Optional[str] = None
    satoshis: Optional[int] = None
    satoshis_now: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_row(cls, row: Mapping[str, Any], source_id: str) -> "Offer":
        """Build from one /book/ row; raises ValueError when the row has no usable id."""
        return cls(
            id=normalize_offer_id(row.get("id")),
            source_id=source_id,
            expires_at=row.get("expires_at"),
            type=_opt_int(row.get("type")),
            currency=_opt_int(row.get("currency")),
            currency_code=row.get("currency_code") or row.get("currencyCode"),
            amount=row.get("amount"),
            has_range=bool(row.get("has_range")),
            min_amount=row.get("min_amount"),
            max_amount=row.get("max_amount"),
            price=row.get("price"),
            premium=row.get("premium"),
            payment_method=row.get("payment_method"),
            satoshis=row.get("satoshis"),
            satoshis_now=row.get("satoshis_now"),
            raw=dict(row),
        )


@dataclass
class NotificationRecord:
    expires_at: int                         # epoch ms, eviction deadline
    message_handle: Optional[str] = None    # set on send, cleared once retracted
    sent_at: Optional[int] = None           # epoch ms of first notification
    source_id: Optional[str] = None         # diagnostics only

    def to_json(self) -> Dict[str, Any]:
        return {
            "expiresAt": self.expires_at,
            "messageHandle": self.message_handle,
            "sentAt": self.sent_at,
            "sourceId": self.source_id,
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any], *, default_expires_at: int) -> "NotificationRecord":
        expires_at = _opt_int(data.get("expiresAt"))
        handle = data.get("messageHandle")
        return cls(
            expires_at=expires_at if expires_at is not None else default_expires_at,
            message_handle=str(handle) if handle not in (None, "") else None,
            sent_at=_opt_int(data.get("sentAt")),
            source_id=data.get("sourceId") or None,
        )


@dataclass(frozen=True)
class OfferFilters:
    currencies: FrozenSet[int] = frozenset()   # empty = every currency
    offer_type: Optional[int] = None

    def matches(self, offer: Offer) -> bool:
        if self.currencies and offer.currency not in self.currencies:
            return False
        if self.offer_type is not None and offer.type != self.offer_type:
            return False
        return True


@dataclass
class SourceOutcome:
    source_id: str
    ok: bool
    offers: int = 0
    duration_ms: int = 0
    error: Optional[str] = None


@dataclass
class AggregationResult:
    offers: List[Offer]
    reachable: Set[str]
    outcomes: List[SourceOutcome] = field(default_factory=list)


@dataclass
class CycleReport:
    started_at: int
    finished_at: Optional[int] = None
    reachable: Set[str] = field(default_factory=set)
    offers_seen: int = 0
    sent: List[OfferId] = field(default_factory=list)
    send_failures: List[OfferId] = field(default_factory=list)
    send_skipped: bool = False
    inactive: List[OfferId] = field(default_factory=list)
    deleted: List[OfferId] = field(default_factory=list)
    delete_failures: List[OfferId] = field(default_factory=list)
    deferred: List[OfferId] = field(default_factory=list)
    evicted: int = 0
    aborted_at: Optional[CycleStep] = None
    persisted: bool = False

    @property
    def aborted(self) -> bool:
        return self.aborted_at is not None
