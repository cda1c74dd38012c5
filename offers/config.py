# offers/config.py
import re
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from offers.enums import Language
from offers.errors import ConfigError
from offers.models import OfferFilters

# Currency ids as used by the RoboSats order book
# (frontend/static/assets/currencies.json upstream)
CURRENCY_MAP: Dict[str, int] = {
    "USD": 1, "EUR": 2, "GBP": 3, "AUD": 4, "CAD": 5, "JPY": 6, "CNY": 7, "CHF": 8,
    "SEK": 9, "NZD": 10, "KRW": 11, "TRY": 12, "RUB": 13, "ZAR": 14, "BRL": 15, "CLP": 16,
    "CZK": 17, "DKK": 18, "HKD": 19, "HUF": 20, "INR": 21, "ISK": 22, "MXN": 23, "MYR": 24,
    "NOK": 25, "PHP": 26, "PLN": 27, "RON": 28, "SGD": 29, "THB": 30, "TWD": 31, "ARS": 32,
    "VES": 33, "COP": 34, "PYG": 35, "PEN": 36, "UYU": 37, "BOB": 38, "CRC": 39, "GTQ": 40,
    "HNL": 41, "NIO": 42, "PAB": 43, "DOP": 44,
    "SAT": 1000,
}

# coordinator id -> display name
COORDINATOR_MAP: Dict[str, str] = {
    "bazaar": "Bazaar",
    "moon": "Moon",
    "lake": "Lake",
    "temple": "Temple",
    "veneto": "Veneto",
    "freedomsats": "FreedomSats",
    "whiteyesats": "WhiteYesats",
    "alice": "Alice",
    "mock": "Mock",
}

AVAILABLE_COORDINATORS: Tuple[str, ...] = tuple(c for c in COORDINATOR_MAP if c != "mock")

STORE_FILE_NAME = "seen_offers.json"


def _split_csv(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        return [p.strip() for p in value.split(",") if p.strip()]
    return [str(p).strip() for p in value if str(p).strip()]


class Currency(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    id: int


class EngineSettings(BaseModel):
    """
    Immutable configuration snapshot handed to every reconciliation cycle.
    Reconfiguring means building a new snapshot, never mutating this one.
    """
    model_config = ConfigDict(frozen=True)

    coordinators: Tuple[str, ...] = Field(default=(), validate_default=True)
    target_currencies: Tuple[Currency, ...] = Field(default=(), validate_default=True)
    offer_type: Optional[int] = None

    check_interval_minutes: int = Field(default=5, ge=1)
    enabled: bool = True
    delete_inactive: bool = True
    fallback_ttl_hours: float = Field(default=24.0, gt=0)
    send_delay_ms: int = Field(default=1000, ge=0)

    data_dir: str = "./data"
    use_mock: bool = False
    api_url: str = ""
    onion_url: str = ""
    host_header: Optional[str] = None
    timeout_ms: int = Field(default=30_000, gt=0)

    language: Language = Language.EN
    timezone: str = "UTC"

    @model_validator(mode="before")
    @classmethod
    def _mock_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        use_mock = str(data.get("use_mock", "")).lower() in ("1", "true", "yes")
        if use_mock:
            if not _split_csv(data.get("coordinators")):
                data["coordinators"] = ("mock",)
            if not _split_csv(data.get("target_currencies")):
                data["target_currencies"] = "USD"
        return data

    @field_validator("coordinators", mode="before")
    @classmethod
    def _parse_coordinators(cls, v: Any) -> Tuple[str, ...]:
        names = [n.lower() for n in _split_csv(v)]
        if names == ["all"]:
            return AVAILABLE_COORDINATORS
        if not names:
            raise ValueError("at least one coordinator must be configured (or 'all')")
        seen: Dict[str, None] = {}
        for n in names:
            seen.setdefault(n, None)
        return tuple(seen)

    @field_validator("target_currencies", mode="before")
    @classmethod
    def _parse_currencies(cls, v: Any) -> Tuple[Currency, ...]:
        if v and not isinstance(v, str) and all(isinstance(c, (Currency, dict)) for c in v):
            return tuple(v)
        out = []
        for raw in _split_csv(v):
            code = raw.upper()
            cid = CURRENCY_MAP.get(code)
            if cid is None:
                available = ", ".join(CURRENCY_MAP)
                raise ValueError(f"Unknown currency code: {code}. Available currencies: {available}")
            out.append(Currency(code=code, id=cid))
        if not out:
            raise ValueError("At least one target currency must be specified")
        return tuple(out)

    @field_validator("language", mode="before")
    @classmethod
    def _parse_language(cls, v: Any) -> Any:
        if isinstance(v, Language):
            return v
        lang = str(v or "EN").upper()
        # "en_US.UTF-8" -> "EN"
        m = re.match(r"^([A-Z]{2})", lang)
        if m:
            lang = m.group(1)
        if lang not in ("EN", "ES"):
            raise ValueError(f"Invalid language: {v}. Must be 'EN' or 'ES'")
        return lang

    @field_validator("offer_type", mode="before")
    @classmethod
    def _parse_offer_type(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        if isinstance(v, str) and v.strip().upper() in ("BUY", "SELL"):
            return 0 if v.strip().upper() == "BUY" else 1
        return v

    # ---- derived ----
    @property
    def check_interval_s(self) -> float:
        return self.check_interval_minutes * 60.0

    @property
    def fallback_ttl_ms(self) -> int:
        return int(self.fallback_ttl_hours * 3_600_000)

    @property
    def currency_ids(self) -> frozenset:
        return frozenset(c.id for c in self.target_currencies)

    @property
    def filters(self) -> OfferFilters:
        return OfferFilters(currencies=self.currency_ids, offer_type=self.offer_type)

    @property
    def store_path(self) -> Path:
        return Path(self.data_dir) / STORE_FILE_NAME

    def currency_code(self, currency_id: Optional[int]) -> Optional[str]:
        for c in self.target_currencies:
            if c.id == currency_id:
                return c.code
        return None


def coordinator_name(coordinator: Optional[str]) -> str:
    if not coordinator:
        return "?"
    return COORDINATOR_MAP.get(coordinator, coordinator)


def make_settings_from_cfg(cfg: dict) -> EngineSettings:
    """Flatten the robosats/engine/timeouts sections of config.yaml into a snapshot."""
    robosats_cfg = cfg.get("robosats", {}) or {}
    engine_cfg = cfg.get("engine", {}) or {}
    timeouts_cfg = cfg.get("timeouts", {}) or {}

    raw: Dict[str, Any] = {
        "coordinators": robosats_cfg.get("coordinators"),
        "use_mock": robosats_cfg.get("use_mock"),
        "api_url": robosats_cfg.get("api_url"),
        "onion_url": robosats_cfg.get("onion_url"),
        "host_header": robosats_cfg.get("host_header"),
        "timeout_ms": timeouts_cfg.get("rest_ms"),
    }
    for key in ("target_currencies", "offer_type", "check_interval_minutes", "enabled",
                "delete_inactive", "fallback_ttl_hours", "send_delay_ms", "data_dir",
                "language", "timezone"):
        raw[key] = engine_cfg.get(key)

    # unset env placeholders resolve to "", fall back to defaults for those
    raw = {k: v for k, v in raw.items() if v is not None and v != ""}

    try:
        return EngineSettings(**raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
