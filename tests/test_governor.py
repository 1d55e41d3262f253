import pytest

from lecturescribe.core.pipeline.governor import TRIP_MESSAGES, FailureGovernor, TripReason
from lecturescribe.services.transcription.base import NetworkError


def test_trips_after_threshold_consecutive_failures() -> None:
    governor = FailureGovernor(0.0, failure_threshold=3)

    governor.record_failure(1.0, NetworkError("down"))
    governor.record_failure(2.0, NetworkError("down"))
    assert not governor.tripped
    assert governor.permit(2.5)

    governor.record_failure(3.0, NetworkError("down"))

    assert governor.tripped
    assert governor.trip_reason is TripReason.CONSECUTIVE_FAILURES
    assert not governor.permit(4.0)


def test_success_resets_consecutive_failures() -> None:
    governor = FailureGovernor(0.0, failure_threshold=3)
    governor.record_failure(1.0)
    governor.record_failure(2.0)
    governor.record_success(3.0)
    governor.record_failure(4.0)
    governor.record_failure(5.0)

    assert not governor.tripped
    assert governor.consecutive_failures == 2


def test_success_within_staleness_bound_does_not_trip() -> None:
    governor = FailureGovernor(0.0, staleness_seconds=60.0)

    governor.record_success(59.0)

    assert not governor.tripped
    assert governor.since_last_success(59.0) == 0.0


def test_success_after_staleness_bound_trips() -> None:
    governor = FailureGovernor(0.0, staleness_seconds=60.0)

    governor.record_success(61.0)

    assert governor.tripped
    assert governor.trip_reason is TripReason.STALE


def test_permit_evaluates_staleness() -> None:
    governor = FailureGovernor(10.0, staleness_seconds=60.0)

    assert governor.permit(69.0)
    assert not governor.permit(71.0)
    assert governor.trip_reason is TripReason.STALE


def test_failure_after_staleness_bound_trips_as_stale() -> None:
    governor = FailureGovernor(0.0, failure_threshold=5, staleness_seconds=60.0)

    governor.record_failure(65.0)

    assert governor.trip_reason is TripReason.STALE


def test_trip_messages_are_distinct() -> None:
    assert TRIP_MESSAGES[TripReason.STALE] != TRIP_MESSAGES[TripReason.CONSECUTIVE_FAILURES]

    governor = FailureGovernor(0.0, failure_threshold=1)
    governor.record_failure(1.0)
    assert governor.trip.user_message == TRIP_MESSAGES[TripReason.CONSECUTIVE_FAILURES]


def test_tripped_is_terminal() -> None:
    governor = FailureGovernor(0.0, failure_threshold=1)
    governor.record_failure(1.0)

    governor.record_success(2.0)

    assert governor.tripped
    assert governor.consecutive_failures == 1


def test_suspended_time_is_not_counted() -> None:
    governor = FailureGovernor(0.0, staleness_seconds=60.0)
    governor.suspend(30.0)
    assert governor.permit(500.0)

    governor.resume(500.0)

    assert governor.since_last_success(520.0) == pytest.approx(50.0)
    assert governor.permit(525.0)
    assert not governor.permit(531.0)


def test_idle_refreshes_staleness_only_without_failures() -> None:
    governor = FailureGovernor(0.0, staleness_seconds=60.0)
    governor.record_idle(50.0)
    assert governor.permit(100.0)

    governor.record_failure(101.0)
    governor.record_idle(120.0)
    assert not governor.permit(115.0 + 50.0)


def test_invalid_parameters_are_rejected() -> None:
    with pytest.raises(ValueError):
        FailureGovernor(0.0, failure_threshold=0)
    with pytest.raises(ValueError):
        FailureGovernor(0.0, staleness_seconds=0)
