"""Tests for the bounded intraday history sequence."""

import pytest

from app.models.domain import HistoryPoint
from app.services.history import merge_history_point


def _point(i: int, value: str = "1.0000", change: str = "0.00") -> HistoryPoint:
    return HistoryPoint(time=f"{9 + i // 60:02d}:{i % 60:02d}", value=value, change=change)


def test_append_to_empty():
    result = merge_history_point((), _point(0))
    assert result == (_point(0),)


def test_append_keeps_order():
    seq = ()
    for i in range(3):
        seq = merge_history_point(seq, _point(i))
    assert [p.time for p in seq] == ["09:00", "09:01", "09:02"]


def test_sixty_points_keep_latest_fifty():
    seq = ()
    for i in range(60):
        seq = merge_history_point(seq, _point(i))
    assert len(seq) == 50
    assert seq[0] == _point(10)
    assert seq[-1] == _point(59)


def test_same_time_replaces_in_place():
    seq = ()
    for i in range(3):
        seq = merge_history_point(seq, _point(i))
    seq = merge_history_point(seq, _point(1, value="1.2345", change="2.10"))
    assert len(seq) == 3
    assert seq[1] == HistoryPoint(time="09:01", value="1.2345", change="2.10")
    assert [p.time for p in seq] == ["09:00", "09:01", "09:02"]


def test_replace_at_capacity_does_not_evict():
    seq = ()
    for i in range(50):
        seq = merge_history_point(seq, _point(i))
    seq = merge_history_point(seq, _point(0, value="9.9999"))
    assert len(seq) == 50
    assert seq[0].value == "9.9999"


def test_input_is_not_mutated():
    original = [_point(0), _point(1)]
    merge_history_point(original, _point(2))
    merge_history_point(original, _point(0, value="2.0000"))
    assert original == [_point(0), _point(1)]


def test_result_is_reiterable():
    seq = merge_history_point((), _point(0))
    assert list(seq) == list(seq)


def test_custom_limit():
    seq = ()
    for i in range(5):
        seq = merge_history_point(seq, _point(i), limit=3)
    assert [p.time for p in seq] == ["09:02", "09:03", "09:04"]


def test_invalid_limit():
    with pytest.raises(ValueError):
        merge_history_point((), _point(0), limit=0)
