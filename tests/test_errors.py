import pytest

from shared.utils import (
    ConcurrentUpdateException,
    IllegalTransitionException,
    InternalServerException,
    NotFoundException,
    ValidationException,
    build_exception,
    classify_error_message,
)


@pytest.mark.parametrize("message, expected", [
    ("Order not found", NotFoundException),
    ("Pesanan tidak ditemukan", NotFoundException),
    ("Validation failed for field", ValidationException),
    ("Status pesanan tidak valid.", ValidationException),
    ("database exploded", InternalServerException),
    ("", InternalServerException),
])
def test_message_heuristic(message, expected):
    assert classify_error_message(message) is expected


def test_error_code_wins_over_status_and_message():
    exc = build_exception("Order not found", status_code=500, error_code="E_ILLEGAL_TRANSITION")
    assert isinstance(exc, IllegalTransitionException)
    assert exc.message == "Order not found"


def test_concurrent_update_code_is_not_an_illegal_transition():
    exc = build_exception("coba lagi", status_code=409, error_code="E_CONCURRENT_UPDATE")
    assert isinstance(exc, ConcurrentUpdateException)
    assert exc.status_code == 409


def test_status_wins_over_message():
    exc = build_exception("something invalid", status_code=404)
    assert isinstance(exc, NotFoundException)


def test_unprocessable_entity_is_validation():
    assert isinstance(build_exception("bad body", status_code=422), ValidationException)


def test_unknown_code_and_status_fall_back_to_heuristic():
    exc = build_exception("resource tidak ditemukan", status_code=502, error_code="E_SOMETHING_ELSE")
    assert isinstance(exc, NotFoundException)


def test_exception_envelope_carries_context():
    exc = ValidationException("Data tidak valid.", context={"tier": "basic"})
    body = exc.to_response()
    assert body.success is False
    assert body.error == "Data tidak valid."
    assert body.error_code == "E_VALIDATION_FAILED"
    assert body.details == {"tier": "basic"}
    assert str(exc) == "Data tidak valid."
