from __future__ import annotations

import pytest

from kanton.api.services.runtime import InFlightGuard, OperationInProgressError
from kanton.query_cache import QueryCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_fetch_reuses_fresh_entries_and_reloads_expired_ones() -> None:
    clock = FakeClock()
    cache = QueryCache(30.0, clock=clock)
    loads: list[int] = []

    def loader() -> dict[str, int]:
        loads.append(1)
        return {"count": len(loads)}

    assert cache.fetch(("cases", "c1"), loader) == {"count": 1}
    clock.now += 10
    assert cache.fetch(("cases", "c1"), loader) == {"count": 1}
    clock.now += 31
    assert cache.fetch(("cases", "c1"), loader) == {"count": 2}


def test_invalidate_drops_every_key_under_prefix() -> None:
    cache = QueryCache(30.0)
    cache.set(("cases", "c1"), "case")
    cache.set(("cases", "c1", "missing-info", "responses"), [])
    cache.set(("cases", "c1", "summons", "s1", "sections"), [])
    cache.set(("cases", "c2"), "other")

    assert cache.invalidate(("cases", "c1")) == 3
    assert cache.get(("cases", "c1")) == (False, None)
    assert cache.get(("cases", "c2")) == (True, "other")


def test_set_evicts_expired_entries_for_other_keys() -> None:
    clock = FakeClock()
    cache = QueryCache(30.0, clock=clock)
    cache.set(("cases", "c1"), "oud")
    cache.set(("cases", "c2"), "ook oud")

    clock.now += 31
    cache.set(("cases", "c3"), "nieuw")

    assert len(cache) == 1
    assert cache.get(("cases", "c3")) == (True, "nieuw")


def test_in_flight_guard_refuses_duplicates_and_releases_on_error() -> None:
    guard = InFlightGuard()

    with guard.hold(("submit-answers", "c1")):
        assert guard.is_held(("submit-answers", "c1"))
        with pytest.raises(OperationInProgressError):
            with guard.hold(("submit-answers", "c1")):
                pass
        with guard.hold(("submit-answers", "c2")):
            pass

    with pytest.raises(RuntimeError):
        with guard.hold(("upload-documents", "c1")):
            raise RuntimeError("boom")
    assert not guard.is_held(("upload-documents", "c1"))
