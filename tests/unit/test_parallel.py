import time

import pytest

from easymlp.core.parallel import resolve_workers, run_ordered


@pytest.mark.parametrize(
    "items, requested, expected",
    [(0, 4, 1), (3, 8, 3), (10, 2, 2), (5, 1, 1)],
)
def test_resolve_workers(items, requested, expected):
    assert resolve_workers(items, requested) == expected


def test_resolve_workers_defaults_to_cpu_count(monkeypatch):
    monkeypatch.setattr("os.cpu_count", lambda: 6)
    assert resolve_workers(4, None) == 4
    assert resolve_workers(20, None) == 6


def test_run_ordered_keeps_item_order_across_threads():
    def handler(value):
        # Later items finish first.
        time.sleep(0.002 * (5 - value))
        return value * value

    assert run_ordered(range(5), handler, max_workers=3) == [0, 1, 4, 9, 16]
    assert run_ordered([], handler, max_workers=3) == []
    assert run_ordered([2], handler, max_workers=None) == [4]
