import sqlite3

import pytest
from datetime import datetime, timezone

from challenge_cache import ChallengeCache, time_key, key_time
from helium_api import HeliumApiError
from models.tables import Challenges
from conftest import FakeSource, make_challenge, make_witness


HOLDDOWN = 50


def test_time_key_sorts_chronologically():
    keys = [time_key(t) for t in (5, 300, 256, 1_700_000_000, 0)]
    assert sorted(keys) == [time_key(t) for t in (0, 5, 256, 300, 1_700_000_000)]
    assert len(time_key(1_700_000_000)) == 8
    assert key_time(time_key(1_700_000_000)) == 1_700_000_000


def test_query_returns_window_in_order(cache):
    cache.import_records("A", [make_challenge(300), make_challenge(100), make_challenge(200)])

    records = cache.query("A", 150, 300)

    assert [r.get_seconds() for r in records] == [200, 300]


def test_query_is_inclusive_and_per_hotspot(cache):
    cache.import_records("A", [make_challenge(t) for t in (100, 200, 300)])
    cache.import_records("B", [make_challenge(t, challengee="B") for t in (100, 200, 300)])

    assert [r.get_seconds() for r in cache.query("A", 100, 300)] == [100, 200, 300]
    assert all(r.path[0].challengee == "B" for r in cache.query("B", 0, 1000))
    assert cache.query("A", 301, 1000) == []


def test_query_accepts_datetimes(cache):
    cache.import_records("A", [make_challenge(t) for t in (100, 200, 300)])
    first = datetime.fromtimestamp(150, tz=timezone.utc)
    last = datetime.fromtimestamp(250, tz=timezone.utc)

    assert [r.get_seconds() for r in cache.query("A", first, last)] == [200]


def test_same_second_replaces(cache):
    first = make_challenge(100)
    second = make_challenge(100, witnesses=[make_witness("B", 100)])
    second.hash = "replacement"

    cache.import_records("A", [first, second])

    records = cache.query("A", 0, 1000)
    assert len(records) == 1
    assert records[0].hash == "replacement"


def test_reconcile_empty_cache_fetches_back_to_first(engine):
    source = FakeSource([make_challenge(t) for t in range(100, 1100, 100)])
    cache = ChallengeCache(engine, source)

    written = cache.reconcile("A", 400, 1000, HOLDDOWN, now=1000)

    assert written == 7
    assert source.calls[0][1] == datetime.fromtimestamp(350, tz=timezone.utc)
    assert [r.get_seconds() for r in cache.query("A", 0, 2000)] == list(range(400, 1100, 100))


def test_reconcile_twice_writes_nothing(engine):
    source = FakeSource([make_challenge(t) for t in range(100, 1100, 100)])
    cache = ChallengeCache(engine, source)

    assert cache.reconcile("A", 400, 1000, HOLDDOWN, now=1000) > 0
    assert cache.reconcile("A", 400, 1000, HOLDDOWN, now=1000) == 0
    assert len(source.calls) == 1


def test_reconcile_stale_cache_writes_nothing_twice(engine):
    # newest remote record is older than the holddown so each call refetches, but never rewrites
    source = FakeSource([make_challenge(t) for t in range(100, 600, 100)])
    cache = ChallengeCache(engine, source)

    cache.reconcile("A", 100, 1000, HOLDDOWN, now=1000)
    assert cache.reconcile("A", 100, 1000, HOLDDOWN, now=1000) == 0
    assert len(cache.query("A", 0, 2000)) == 5


def test_reconcile_fills_gap_on_both_ends(engine):
    remote = [make_challenge(t) for t in range(500, 1600, 100)]
    source = FakeSource(remote)
    cache = ChallengeCache(engine, source)
    cache.import_records("A", [make_challenge(t, witnesses=[make_witness("B", t)]) for t in (1000, 1100, 1200)])

    written = cache.reconcile("A", 600, 1500, HOLDDOWN, now=1500)

    assert written == 7
    seconds = [r.get_seconds() for r in cache.query("A", 0, 2000)]
    assert seconds == list(range(600, 1600, 100))
    # cached records inside the old span are left alone
    assert all(r.path[0].witnesses for r in cache.query("A", 1000, 1200))


def test_reconcile_backfills_recent_end_only(engine):
    source = FakeSource([make_challenge(t) for t in range(100, 2100, 100)])
    cache = ChallengeCache(engine, source)
    cache.import_records("A", [make_challenge(t) for t in range(100, 1100, 100)])

    written = cache.reconcile("A", 100, 2000, HOLDDOWN, now=2000)

    assert source.calls[0][1] == datetime.fromtimestamp(1000 - HOLDDOWN, tz=timezone.utc)
    assert written == 10
    assert [r.get_seconds() for r in cache.query("A", 0, 3000)] == list(range(100, 2100, 100))


def test_reconcile_noop_when_fresh_and_reaching_back(engine):
    source = FakeSource([])
    cache = ChallengeCache(engine, source)
    cache.import_records("A", [make_challenge(t) for t in (120, 500, 990)])

    assert cache.reconcile("A", 150, 1000, HOLDDOWN, now=1000) == 0
    assert source.calls == []


def test_reconcile_failure_leaves_cache_untouched(engine):
    source = FakeSource([], error=HeliumApiError("boom"))
    cache = ChallengeCache(engine, source)
    cache.import_records("A", [make_challenge(t) for t in (1000, 1100)])

    with pytest.raises(HeliumApiError):
        cache.reconcile("A", 100, 2000, HOLDDOWN, now=2000)

    assert [r.get_seconds() for r in cache.query("A", 0, 3000)] == [1000, 1100]


def test_reconcile_rejects_inverted_window(cache):
    with pytest.raises(ValueError):
        cache.reconcile("A", 200, 100, HOLDDOWN, now=200)


def test_no_duplicate_keys_after_many_reconciles(engine):
    source = FakeSource([make_challenge(t) for t in range(100, 3100, 100)])
    cache = ChallengeCache(engine, source)
    for first, now in ((2000, 2500), (1000, 2500), (100, 3000), (100, 3000)):
        cache.reconcile("A", first, now, HOLDDOWN, now=now)

    with cache.session() as sess:
        keys = [row.time_key for row in sess.query(Challenges).filter(Challenges.address == "A")]
    assert len(keys) == len(set(keys)) == 30


def test_delete_before_and_after(cache):
    cache.import_records("A", [make_challenge(t) for t in (100, 200, 300, 400)])

    assert cache.delete_range("A", before=200) == 1
    assert cache.delete_range("A", after=300) == 2
    assert [r.get_seconds() for r in cache.query("A", 0, 1000)] == [200]


def test_delete_range_requires_one_bound(cache):
    with pytest.raises(ValueError):
        cache.delete_range("A")
    with pytest.raises(ValueError):
        cache.delete_range("A", before=1, after=2)


def test_delete_all_and_summaries(cache, directory):
    cache.import_records("A", [make_challenge(t) for t in (100, 200, 300)])
    cache.import_records("Z", [make_challenge(500, challengee="Z")])

    summaries = {s.address: s for s in cache.summaries()}
    assert summaries["A"].name == "angry-purple-tiger"
    assert (summaries["A"].records, summaries["A"].first, summaries["A"].last) == (3, 100, 300)
    assert summaries["Z"].name is None

    assert cache.delete_all("A") == 3
    assert [s.address for s in cache.summaries()] == ["Z"]


def test_import_skips_malformed(cache):
    bad = make_challenge(100, receipt=False, witnesses=[])

    assert cache.import_records("A", [bad, make_challenge(200)]) == 1


class LockCheckingSource(FakeSource):
    """tries to take the write lock from a second connection while the fetch is in flight"""

    def __init__(self, db_path, challenges):
        super().__init__(challenges)
        self.db_path = db_path
        self.locked_out = None

    def fetch_challenges(self, address, not_before):
        other = sqlite3.connect(self.db_path, timeout=0.05, isolation_level=None)
        try:
            other.execute("BEGIN IMMEDIATE")
            other.execute("ROLLBACK")
            self.locked_out = False
        except sqlite3.OperationalError:
            self.locked_out = True
        finally:
            other.close()
        return super().fetch_challenges(address, not_before)


def test_reconcile_holds_write_lock_during_fetch(engine):
    source = LockCheckingSource(engine.url.database, [make_challenge(t) for t in (400, 500)])
    cache = ChallengeCache(engine, source)

    assert cache.reconcile("A", 400, 500, HOLDDOWN, now=500) == 2
    assert source.locked_out is True


def test_reads_do_not_block_writers(engine, cache):
    cache.import_records("A", [make_challenge(100)])
    with cache.session() as sess:
        sess.query(Challenges).all()
        other = sqlite3.connect(engine.url.database, timeout=0.05, isolation_level=None)
        other.execute("BEGIN IMMEDIATE")
        other.execute("ROLLBACK")
        other.close()
