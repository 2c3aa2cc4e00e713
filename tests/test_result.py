"""Tests for the Result type."""
import pytest

from lapse_align.result import AlignmentError, NoSubjectDetectedError, Result


def test_success():
    result = Result.success(3)
    assert result.is_success and not result.is_error
    assert result.get_or_none() == 3
    assert result.exception_or_none() is None
    assert result.map(lambda v: v * 2).unwrap() == 6


def test_failure_keeps_cause_and_message():
    error = NoSubjectDetectedError("nothing there")
    result = Result.failure(error, "No subject detected")
    assert result.is_error
    assert result.get_or_none() is None
    assert result.exception_or_none() is error
    assert result.map(lambda v: v * 2) is result
    with pytest.raises(AlignmentError):
        result.unwrap()


def test_default_message_and_wrap():
    result = Result.failure(ValueError("bad value"))
    assert result.message == "bad value"
    wrapped = result.wrap_error("Step failed")
    assert wrapped.message == "Step failed"
    assert wrapped.exception_or_none() is result.exception_or_none()
