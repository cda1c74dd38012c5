# offers/formatter.py
from typing import Any, Dict, Optional

from offers.config import EngineSettings, coordinator_name
from offers.enums import Language, OfferType
from offers.models import Offer
from utils.time import humanize_delta_ms, parse_ts_ms, utc_ms

STRINGS: Dict[Language, Dict[str, str]] = {
    Language.EN: {
        "buy": "🟢 BUY",
        "sell": "🔴 SELL",
        "variable": "Variable",
        "market": "Market price",
        "amount": "Amount",
        "price": "Price",
        "payment": "Payment",
        "expires_at": "Expires in",
        "see_offer": "See offer",
    },
    Language.ES: {
        "buy": "🟢 COMPRA",
        "sell": "🔴 VENTA",
        "variable": "Variable",
        "market": "A mercado",
        "amount": "Monto",
        "price": "Precio",
        "payment": "Pago",
        "expires_at": "Expira en",
        "see_offer": "Ver oferta",
    },
}

SATS_PER_BTC = 100_000_000


def _num(x: Any) -> Optional[float]:
    if x is None or isinstance(x, bool):
        return None
    try:
        return float(x)
    except (TypeError, ValueError):
        return None


def _fmt(x: float) -> str:
    if float(x).is_integer():
        return f"{int(x):,}"
    return f"{x:,.3f}".rstrip("0").rstrip(".")


def _sats_of(offer: Offer) -> Optional[float]:
    # satoshis_now includes fees, prefer it
    v = _num(offer.satoshis_now)
    return v if v is not None else _num(offer.satoshis)


def format_amount(offer: Offer, currency_code: str, strings: Dict[str, str]) -> str:
    fiat = strings["variable"]
    sats_txt = ""
    sats = _sats_of(offer)
    lo, hi = _num(offer.min_amount), _num(offer.max_amount)

    if offer.has_range and lo and hi:
        fiat = f"{_fmt(lo)} - {_fmt(hi)} {currency_code}"
        if sats is not None:
            # reported sats correspond to the midpoint of the range
            ratio = sats / ((lo + hi) / 2)
            sats_txt = f"{_fmt(round(lo * ratio))} - {_fmt(round(hi * ratio))} sats"
        else:
            price = _num(offer.raw.get("price_now")) or _num(offer.price)
            if price and price > 0:
                sats_txt = (f"{_fmt(round(lo / price * SATS_PER_BTC))} - "
                            f"{_fmt(round(hi / price * SATS_PER_BTC))} sats")
    else:
        amt = _num(offer.amount)
        if amt:
            fiat = f"{_fmt(amt)} {currency_code}"
        if sats is not None:
            sats_txt = f"{_fmt(sats)} sats"

    return f"{fiat} ({sats_txt})" if sats_txt else fiat


def format_offer(offer: Offer, settings: EngineSettings, now_ms: Optional[int] = None) -> str:
    strings = STRINGS[settings.language]
    now_ms = utc_ms() if now_ms is None else now_ms

    side = strings["buy"] if offer.type == OfferType.BUY.value else strings["sell"]
    currency_code = offer.currency_code or settings.currency_code(offer.currency) or ""

    amount = format_amount(offer, currency_code, strings)

    price_v = _num(offer.price)
    price = f"{_fmt(round(price_v))} {currency_code}".rstrip() if price_v else strings["market"]
    premium = ""
    if offer.premium not in (None, "", 0):
        p = _num(offer.premium)
        premium = f"{'+' if p and p > 0 else ''}{offer.premium}%"

    expires_info = ""
    exp_ms = parse_ts_ms(offer.expires_at)
    if exp_ms is not None:
        expires_info = humanize_delta_ms(exp_ms - now_ms)

    coordinator = offer.source_id
    link = f"{settings.onion_url.rstrip('/')}/order/{coordinator}/{offer.id}"

    lines = [
        f"*{side} Bitcoin - Robosats ({coordinator_name(coordinator)})*",
        "━━━━━━━━━━━━━━━━━",
        f"💰 *{strings['amount']}:* {amount}",
        f"💵 *{strings['price']}:* {price}{f' ({premium})' if premium else ''}",
        f"🏦 *{strings['payment']}:* {offer.payment_method or strings['see_offer']}",
        f"⏳ *{strings['expires_at']}:* {expires_info}",
        f"🔗 {link}",
    ]
    return "\n".join(lines).strip()
