import logging
from datetime import datetime, timedelta, timezone

import pytest

from shared.order_status import (
    ALLOWED_TRANSITIONS,
    INITIAL_STATUS,
    OrderStatus,
    StatusHistory,
    StatusStateMachine,
    coerce_status,
    status_label,
)
from shared.utils import IllegalTransitionException, ValidationException


def test_terminal_statuses_have_no_exits():
    machine = StatusStateMachine(strict=True)
    for status in (OrderStatus.PESANAN_SELESAI, OrderStatus.DIBATALKAN):
        assert machine.is_terminal(status)
        assert machine.allowed_targets(status) == frozenset()


def test_every_non_terminal_status_can_be_cancelled():
    for status, targets in ALLOWED_TRANSITIONS.items():
        if not StatusStateMachine.is_terminal(status):
            assert OrderStatus.DIBATALKAN in targets


def test_strict_mode_rejects_jump_to_completed():
    machine = StatusStateMachine(strict=True)
    with pytest.raises(IllegalTransitionException) as exc:
        machine.ensure_transition(INITIAL_STATUS, "Pesanan Selesai", order_id="o-1")
    assert exc.value.status_code == 409
    assert exc.value.error_code == "E_ILLEGAL_TRANSITION"
    assert exc.value.context["order_id"] == "o-1"


def test_strict_mode_allows_revision_round():
    machine = StatusStateMachine(strict=True)
    target = machine.ensure_transition("Desain Sedang Dikerjakan", "Brief Sedang Ditinjau")
    assert target is OrderStatus.BRIEF_DITINJAU
    assert machine.can_transition("Pesanan Diterima", "Brief Sedang Ditinjau")
    assert not machine.can_transition("Pesanan Diterima", "Pesanan Selesai")


def test_lenient_mode_accepts_and_warns(caplog):
    machine = StatusStateMachine(strict=False)
    with caplog.at_level(logging.WARNING, logger="order-status"):
        target = machine.ensure_transition(INITIAL_STATUS, OrderStatus.PESANAN_SELESAI, order_id="o-2")
    assert target is OrderStatus.PESANAN_SELESAI
    assert any("lenient" in r.getMessage() for r in caplog.records)


def test_unknown_status_is_validation_error():
    with pytest.raises(ValidationException):
        coerce_status("Dikirim")


def test_labels_cover_legacy_codes():
    assert status_label(OrderStatus.DIBATALKAN) == "Dibatalkan"
    assert status_label("shipped") == "Dikirim"
    assert status_label("mystery") == "Unknown"


def test_history_is_append_only_and_allows_revisits():
    history = StatusHistory()
    t0 = datetime(2024, 5, 1, tzinfo=timezone.utc)
    history.append(OrderStatus.BRIEF_DITINJAU, timestamp=t0)
    history.append(OrderStatus.DESAIN_DIKERJAKAN, timestamp=t0 + timedelta(hours=1))
    first = history.entries[0]
    history.append(OrderStatus.BRIEF_DITINJAU, timestamp=t0 + timedelta(hours=2), notes="revisi")

    assert len(history) == 3
    assert history.entries[0] == first
    assert len(history.visits(OrderStatus.BRIEF_DITINJAU)) == 2
    assert history.latest.notes == "revisi"


def test_history_accepts_legacy_map_sorted():
    history = StatusHistory.from_wire({
        "Pesanan Diterima": "2024-05-02T10:00:00Z",
        "Menunggu Pembayaran": "2024-05-01T10:00:00Z",
    })
    assert [e.status for e in history] == ["Menunggu Pembayaran", "Pesanan Diterima"]


def test_naive_timestamps_are_treated_as_utc():
    history = StatusHistory.from_wire([{"status": "Dibatalkan", "timestamp": "2024-05-01T10:00:00"}])
    assert history.latest.timestamp.tzinfo is not None
    assert history.to_list()[0]["timestamp"].startswith("2024-05-01T10:00:00")
