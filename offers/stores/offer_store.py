# offers/stores/offer_store.py
from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional, Set, Tuple

from offers.errors import StoreError
from offers.models import NotificationRecord, OfferId, normalize_offer_id
from utils.logger import logger
from utils.time import utc_ms

DEFAULT_FALLBACK_TTL_MS = 24 * 60 * 60 * 1000


class OfferStateStore:
    """
    Durable mirror of every offer we have notified, keyed by offer id only.

    On-disk shape (JSON object):
        {"<offerId>": {"expiresAt": ms, "messageHandle": str|null,
                       "sentAt": ms|null, "sourceId": str|null}}

    Legacy shapes upgraded by load():
        ["<offerId>", ...]            -> expiresAt = now + fallback TTL
        {"<offerId>": <expiresAtMs>}  -> expiresAt kept, no handle

    Mutations only touch memory; save() writes the whole store atomically.
    """

    def __init__(self,
                 path: str | Path,
                 *,
                 fallback_ttl_ms: int = DEFAULT_FALLBACK_TTL_MS,
                 clock: Callable[[], int] = utc_ms) -> None:
        self.path = Path(path)
        self.fallback_ttl_ms = int(fallback_ttl_ms)
        self._clock = clock
        self._records: Dict[OfferId, NotificationRecord] = {}
        self.dirty = False

    # ---- load / migrate -----------------------------------------------------------
    def load(self) -> None:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("No previous offer data found, starting fresh")
            self._records = {}
            self.dirty = False
            return
        except OSError as e:
            raise StoreError(f"cannot read {self.path}: {e}") from e

        try:
            parsed = json.loads(text) if text.strip() else {}
        except json.JSONDecodeError as e:
            raise StoreError(f"corrupt offer store {self.path}: {e}") from e

        records, migrated = self._decode(parsed)
        self._records = records
        self.dirty = False
        logger.info(f"Loaded {len(self._records)} previously seen offers")

        if migrated:
            logger.info(f"Migrated offer tracking format in {self.path} to notification records")
            self.save()

    def _decode(self, parsed) -> Tuple[Dict[OfferId, NotificationRecord], bool]:
        now = self._clock()
        default_exp = now + self.fallback_ttl_ms
        records: Dict[OfferId, NotificationRecord] = {}

        if isinstance(parsed, list):
            for raw_id in parsed:
                try:
                    records[normalize_offer_id(raw_id)] = NotificationRecord(expires_at=default_exp)
                except ValueError:
                    logger.warning(f"Dropping invalid offer id in legacy store: {raw_id!r}")
            return records, True

        if not isinstance(parsed, dict):
            raise StoreError(f"unexpected offer store shape in {self.path}: {type(parsed).__name__}")

        migrated = False
        for raw_id, value in parsed.items():
            try:
                offer_id = normalize_offer_id(raw_id)
            except ValueError:
                logger.warning(f"Dropping invalid offer id in store: {raw_id!r}")
                migrated = True
                continue
            if isinstance(value, dict):
                records[offer_id] = NotificationRecord.from_json(value, default_expires_at=default_exp)
                continue
            migrated = True
            try:
                exp = int(value)
            except (TypeError, ValueError):
                exp = default_exp
            records[offer_id] = NotificationRecord(expires_at=exp)
        return records, migrated

    # ---- persistence --------------------------------------------------------------
    def save(self) -> None:
        """
        Write the full record set via temp file + os.replace, so a failed
        write leaves the previous file untouched. Errors propagate.
        """
        payload = {str(k): r.to_json() for k, r in self._records.items()}
        data = json.dumps(payload, indent=2, ensure_ascii=False)
        tmp_name: Optional[str] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            raise StoreError(f"cannot write {self.path}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning(f"Could not remove temp file {tmp_name}")
        self.dirty = False

    # ---- queries ------------------------------------------------------------------
    def is_tracked(self, offer_id: OfferId) -> bool:
        return normalize_offer_id(offer_id) in self._records

    def get(self, offer_id: OfferId) -> Optional[NotificationRecord]:
        return self._records.get(normalize_offer_id(offer_id))

    def tracked_ids(self) -> Set[OfferId]:
        return set(self._records)

    def records(self) -> Dict[OfferId, NotificationRecord]:
        return dict(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, offer_id) -> bool:
        return self.is_tracked(offer_id)

    def __iter__(self) -> Iterator[OfferId]:
        return iter(list(self._records))

    # ---- mutations ----------------------------------------------------------------
    def put(self, offer_id: OfferId, record: NotificationRecord) -> None:
        """Insert or update; a handle already set is never replaced by another one."""
        key = normalize_offer_id(offer_id)
        current = self._records.get(key)
        if (current is not None and current.message_handle
                and record.message_handle and record.message_handle != current.message_handle):
            raise StoreError(f"offer {key} already has message handle {current.message_handle}")
        self._records[key] = NotificationRecord(
            expires_at=int(record.expires_at),
            message_handle=record.message_handle,
            sent_at=record.sent_at,
            source_id=record.source_id,
        )
        self.dirty = True

    def clear_handle(self, offer_id: OfferId) -> None:
        rec = self._records.get(normalize_offer_id(offer_id))
        if rec is not None and rec.message_handle is not None:
            rec.message_handle = None
            self.dirty = True

    def remove(self, offer_id: OfferId) -> None:
        if self._records.pop(normalize_offer_id(offer_id), None) is not None:
            self.dirty = True

    def evict_expired(self,
                      now: Optional[int] = None,
                      *,
                      persist: bool = True,
                      keep: Optional[Set[OfferId]] = None) -> int:
        """Drop records with expires_at <= now (except ids in keep)."""
        now = self._clock() if now is None else now
        keep = keep or set()
        expired = [k for k, r in self._records.items() if r.expires_at <= now and k not in keep]
        for k in expired:
            del self._records[k]
        if expired:
            self.dirty = True
            logger.info(f"Cleaned up {len(expired)} expired offer(s)")
            if persist:
                self.save()
        return len(expired)
