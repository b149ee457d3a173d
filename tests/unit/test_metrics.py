import pytest

from cvforge.metrics import BoundedCounters


def test_counters_increment_and_snapshot() -> None:
    counters = BoundedCounters(max_entries=4)
    counters.increment("POST /api/v1/cvs 201")
    counters.increment("POST /api/v1/cvs 201")
    counters.increment("value_error.injection_attempt", 3)

    assert counters.snapshot() == {
        "POST /api/v1/cvs 201": 2,
        "value_error.injection_attempt": 3,
    }


def test_counters_evict_least_recently_touched() -> None:
    counters = BoundedCounters(max_entries=2)
    counters.increment("a")
    counters.increment("b")
    counters.increment("a")
    counters.increment("c")

    assert set(counters.snapshot()) == {"a", "c"}


def test_counters_clear() -> None:
    counters = BoundedCounters()
    counters.increment("a")
    counters.clear()
    assert counters.snapshot() == {}


def test_counters_require_positive_capacity() -> None:
    with pytest.raises(ValueError):
        BoundedCounters(max_entries=0)
