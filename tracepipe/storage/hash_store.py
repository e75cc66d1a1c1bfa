"""Claim ledger for event content hashes.

A claim is a single INSERT against the ``event_hashes`` primary key. Whoever's
INSERT commits owns the hash; every other concurrent attempt gets an
IntegrityError from the database and reports a duplicate. There is no
"look first, then insert" path anywhere in this module.

Lifecycle of a row: claimed (``confirmed_at`` NULL) -> confirmed after the
event is indexed, or deleted by ``release`` when indexing failed. Confirmed rows
are permanent.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from tracepipe.storage.engine import Database
from tracepipe.storage.tables import EventHash, utc_now
from tracepipe.utils import get_logger

logger = get_logger(__name__)


class EventHashStore:
    def __init__(self, db: Database, *, lease_seconds: Optional[float] = 900.0):
        self._db = db
        self.lease_seconds = lease_seconds

    def claim(self, digest: str, owner: str) -> bool:
        """Atomically register ``digest`` for ``owner``; True iff this call won."""
        try:
            with self._db.session_scope() as s:
                s.add(EventHash(hash=digest, claimed_by=owner, inserted_at=utc_now()))
            return True
        except IntegrityError:
            return self._take_over_stale(digest, owner)

    def _take_over_stale(self, digest: str, owner: str) -> bool:
        # Compare-and-set on an abandoned, never-confirmed claim
        if not self.lease_seconds:
            return False
        now = utc_now()
        cutoff = now - timedelta(seconds=float(self.lease_seconds))
        stmt = (
            update(EventHash)
            .where(
                EventHash.hash == digest,
                EventHash.confirmed_at.is_(None),
                EventHash.inserted_at < cutoff,
            )
            .values(claimed_by=owner, inserted_at=now)
            .execution_options(synchronize_session=False)
        )
        with self._db.session_scope() as s:
            taken = s.execute(stmt).rowcount == 1
        if taken:
            logger.warning("hash_store: took over stale claim hash=%s owner=%s", digest[:12], owner)
        return taken

    def confirm(self, digests: Iterable[str], owner: str) -> int:
        keys = list(digests)
        if not keys:
            return 0
        stmt = (
            update(EventHash)
            .where(EventHash.hash.in_(keys), EventHash.claimed_by == owner, EventHash.confirmed_at.is_(None))
            .values(confirmed_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        with self._db.session_scope() as s:
            n = s.execute(stmt).rowcount
        if n != len(keys):
            logger.warning("hash_store: confirmed=%d of claimed=%d owner=%s", n, len(keys), owner)
        return n

    def release(self, digests: Iterable[str], owner: str) -> int:
        """Drop the caller's own unconfirmed claims so a retry can reclaim them."""
        keys = list(digests)
        if not keys:
            return 0
        stmt = (
            delete(EventHash)
            .where(EventHash.hash.in_(keys), EventHash.claimed_by == owner, EventHash.confirmed_at.is_(None))
            .execution_options(synchronize_session=False)
        )
        with self._db.session_scope() as s:
            n = s.execute(stmt).rowcount
        logger.info("hash_store: released=%d owner=%s", n, owner)
        return n

    def contains(self, digest: str) -> bool:
        with self._db.session_scope() as s:
            return s.get(EventHash, digest) is not None

    def is_confirmed(self, digest: str) -> bool:
        with self._db.session_scope() as s:
            row = s.get(EventHash, digest)
            return row is not None and row.confirmed_at is not None

    def count(self) -> int:
        with self._db.session_scope() as s:
            return int(s.scalar(select(func.count()).select_from(EventHash)) or 0)

