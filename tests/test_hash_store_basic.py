from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from tracepipe.storage import EventHashStore
from tracepipe.storage.tables import EventHash, utc_now

H = "a" * 64


def test_claim_once(db):
    store = EventHashStore(db)
    assert store.claim(H, "run-1") is True
    assert store.claim(H, "run-2") is False
    assert store.claim(H, "run-1") is False
    assert store.count() == 1


def test_concurrent_claims_exactly_one_wins(db):
    store = EventHashStore(db)
    owners = [f"run-{i}" for i in range(16)]
    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(lambda owner: store.claim(H, owner), owners))
    assert results.count(True) == 1
    assert store.count() == 1


def test_release_allows_reclaim(db):
    store = EventHashStore(db)
    assert store.claim(H, "run-1")
    assert store.release([H], "run-1") == 1
    assert not store.contains(H)
    assert store.claim(H, "run-2")


def test_release_only_touches_own_unconfirmed_claims(db):
    store = EventHashStore(db)
    store.claim(H, "run-1")
    assert store.release([H], "run-2") == 0
    store.confirm([H], "run-1")
    assert store.release([H], "run-1") == 0
    assert store.is_confirmed(H)


def test_stale_unconfirmed_claim_is_taken_over(db):
    store = EventHashStore(db, lease_seconds=60)
    with db.session_scope() as s:
        s.add(EventHash(hash=H, claimed_by="dead-run", inserted_at=utc_now() - timedelta(minutes=5)))
    assert store.claim(H, "run-2") is True
    # the dead run can no longer confirm or release it
    assert store.confirm([H], "dead-run") == 0
    assert store.confirm([H], "run-2") == 1


def test_confirmed_claim_is_never_taken_over(db):
    old = utc_now() - timedelta(days=30)
    with db.session_scope() as s:
        s.add(EventHash(hash=H, claimed_by="run-1", inserted_at=old, confirmed_at=old))
    store = EventHashStore(db, lease_seconds=60)
    assert store.claim(H, "run-2") is False


def test_takeover_disabled_without_lease(db):
    with db.session_scope() as s:
        s.add(EventHash(hash=H, claimed_by="dead-run", inserted_at=utc_now() - timedelta(days=1)))
    store = EventHashStore(db, lease_seconds=None)
    assert store.claim(H, "run-2") is False
