import time
from datetime import datetime, timedelta, timezone

import pytest

from btcticker.memory import InMemoryDB


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


START = datetime(2025, 6, 30, 10, 20, tzinfo=timezone.utc)


def test_defaults():
    with InMemoryDB() as db:
        assert db.ttl == timedelta(minutes=10)
        assert db.size == 1024
        assert db.interval == timedelta(minutes=10)


def test_with_size():
    with InMemoryDB(size=2048) as db:
        assert db.size == 2048


def test_with_interval():
    with InMemoryDB(interval=timedelta(milliseconds=1)) as db:
        assert db.interval == timedelta(milliseconds=1)


def test_with_ttl():
    with InMemoryDB(ttl=timedelta(minutes=1)) as db:
        assert db.ttl == timedelta(minutes=1)


def test_with_clock():
    fixed = datetime(2009, 11, 10, 23, 0, 0, tzinfo=timezone.utc)
    with InMemoryDB(clock=lambda: fixed) as db:
        assert db.clock() == fixed


@pytest.mark.parametrize("interval", [timedelta(0), timedelta(seconds=-1)])
def test_non_positive_interval_rejected(interval):
    with pytest.raises(ValueError):
        InMemoryDB(interval=interval)


def test_enter_returns_same_db():
    db = InMemoryDB()
    with db as entered:
        assert entered is db


def test_add():
    with InMemoryDB() as db:
        db.add(1)
        assert db.query(None) == [1]


def test_query_items():
    with InMemoryDB() as db:
        db.add(1)
        items = db.query()
        assert len(items) == 1
        assert items[0] == 1


def test_query_on_expired_items():
    clock = FakeClock(START)
    with InMemoryDB(
        ttl=timedelta(milliseconds=800),
        interval=timedelta(milliseconds=800),
        clock=clock,
    ) as db:
        db.add(1)
        clock.advance(timedelta(seconds=1))
        db.add(2)
        db.add(3)
        items = db.query(lambda i: i >= 2)
        assert items == [2, 3]
        assert db.query() == [2, 3]


def test_query_keeps_insertion_order():
    with InMemoryDB() as db:
        for value in (5, 1, 4):
            db.add(value)
        assert db.query() == [5, 1, 4]


def test_query_filter_excludes_all():
    with InMemoryDB() as db:
        db.add(1)
        assert db.query(lambda i: i > 10) == []


def test_query_includes_item_expiring_exactly_now_but_cleanup_drops_it():
    clock = FakeClock(START)
    with InMemoryDB(ttl=timedelta(seconds=1), clock=clock) as db:
        db.add(1)
        clock.advance(timedelta(seconds=1))
        assert db.query() == [1]
        db.cleanup()
        assert db.query() == []


def test_cleanup_removes_only_expired():
    clock = FakeClock(START)
    with InMemoryDB(ttl=timedelta(seconds=10), clock=clock) as db:
        db.add("old")
        clock.advance(timedelta(seconds=5))
        db.add("new")
        clock.advance(timedelta(seconds=6))
        db.cleanup()
        clock.now = START
        assert db.query() == ["new"]


def test_background_cleanup_runs():
    clock = FakeClock(START)
    with InMemoryDB(
        ttl=timedelta(seconds=1), interval=timedelta(milliseconds=10), clock=clock
    ) as db:
        db.add(1)
        clock.advance(timedelta(seconds=2))
        time.sleep(0.2)
        clock.now = START
        assert db.query() == []


def test_stop_halts_background_cleanup():
    clock = FakeClock(START)
    db = InMemoryDB(
        ttl=timedelta(seconds=1), interval=timedelta(milliseconds=10), clock=clock
    )
    db.stop()
    time.sleep(0.05)
    db.add(1)
    clock.advance(timedelta(seconds=2))
    time.sleep(0.1)
    clock.now = START
    assert db.query() == [1]


def test_naive_clock_is_accepted():
    local = datetime(2025, 1, 1, 12, 0, 0)
    with InMemoryDB(clock=lambda: local) as db:
        db.add("x")
        assert db.query() == ["x"]