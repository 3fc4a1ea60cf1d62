from __future__ import annotations

import pytest

from statement_import.errors import InvalidFormat, InvalidTransition
from statement_import.models import ImportStatus
from statement_import.progress import ProgressChannel, can_transition


def test_linear_path_and_failure_edges():
    assert can_transition(ImportStatus.IDLE, ImportStatus.EXTRACTING)
    assert can_transition(ImportStatus.REVIEWING, ImportStatus.SAVING)
    assert can_transition(ImportStatus.PARSING, ImportStatus.FAILED)
    assert not can_transition(ImportStatus.IDLE, ImportStatus.SAVING)
    assert not can_transition(ImportStatus.EXTRACTING, ImportStatus.REVIEWING)
    assert not can_transition(ImportStatus.IDLE, ImportStatus.FAILED)
    for terminal in (ImportStatus.COMPLETED, ImportStatus.FAILED):
        assert not any(can_transition(terminal, target) for target in ImportStatus)


def test_invalid_transition_raises_and_leaves_state_unchanged():
    channel = ProgressChannel()

    with pytest.raises(InvalidTransition) as excinfo:
        channel.transition(ImportStatus.SAVING)
    assert excinfo.value.current is ImportStatus.IDLE
    assert excinfo.value.target is ImportStatus.SAVING
    assert channel.status is ImportStatus.IDLE


def test_progress_is_monotonic_within_a_run():
    channel = ProgressChannel()
    channel.transition(ImportStatus.EXTRACTING, progress=0.0)

    channel.advance(0.25)
    channel.advance(0.1)
    assert channel.progress == pytest.approx(0.25)

    channel.transition(ImportStatus.PARSING, progress=0.05)
    assert channel.progress == pytest.approx(0.25)

    channel.advance(7.0)
    assert channel.progress == 1.0

    channel.reset()
    assert channel.status is ImportStatus.IDLE
    assert channel.progress == 0.0


def test_subscribers_see_updates_in_order_until_unsubscribed():
    channel = ProgressChannel()
    seen: list[tuple[ImportStatus, float]] = []
    unsubscribe = channel.subscribe(lambda s: seen.append((s.status, s.progress)))

    channel.transition(ImportStatus.EXTRACTING, progress=0.0)
    channel.advance(0.3)
    channel.transition(ImportStatus.PARSING)
    unsubscribe()
    channel.advance(0.5)

    assert seen == [
        (ImportStatus.EXTRACTING, 0.0),
        (ImportStatus.EXTRACTING, 0.3),
        (ImportStatus.PARSING, 0.3),
    ]


def test_failing_subscriber_does_not_break_publication():
    channel = ProgressChannel()
    seen: list[ImportStatus] = []

    def _boom(_snapshot):
        raise RuntimeError("observer bug")

    channel.subscribe(_boom)
    channel.subscribe(lambda s: seen.append(s.status))

    channel.transition(ImportStatus.EXTRACTING)

    assert seen == [ImportStatus.EXTRACTING]


def test_fail_records_error_and_is_terminal():
    channel = ProgressChannel()
    channel.transition(ImportStatus.EXTRACTING)
    error = InvalidFormat()

    snapshot = channel.fail(error)

    assert snapshot.status is ImportStatus.FAILED
    assert snapshot.error is error
    assert snapshot.message == error.message
    with pytest.raises(InvalidTransition):
        channel.transition(ImportStatus.EXTRACTING)
    with pytest.raises(InvalidTransition):
        channel.fail(error)


def test_subscriber_may_publish_from_its_callback():
    channel = ProgressChannel()
    seen: list[ImportStatus] = []

    def _fail_on_extracting(snapshot):
        seen.append(snapshot.status)
        if snapshot.status is ImportStatus.EXTRACTING:
            channel.fail(InvalidFormat())

    channel.subscribe(_fail_on_extracting)
    channel.transition(ImportStatus.EXTRACTING)

    assert seen == [ImportStatus.EXTRACTING, ImportStatus.FAILED]
    assert channel.status is ImportStatus.FAILED


def test_atomic_block_defers_notifications_until_exit():
    channel = ProgressChannel()
    seen: list[ImportStatus] = []
    channel.subscribe(lambda s: seen.append(s.status))

    with channel.atomic():
        channel.transition(ImportStatus.EXTRACTING)
        channel.transition(ImportStatus.PARSING)
        assert seen == []

    assert seen == [ImportStatus.EXTRACTING, ImportStatus.PARSING]
