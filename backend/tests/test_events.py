import uuid
from datetime import timedelta

from conftest import at
from services.break_alerts import BreakAlertTracker
from services.events import BreakAlertEvent, EventBus, SubmissionEvent, event_to_dict


def _submission(trigger="operator"):
    return SubmissionEvent(
        attendance_id=uuid.uuid4(),
        student_id=uuid.uuid4(),
        student_name="Ada",
        classroom_id=uuid.uuid4(),
        exam_id=uuid.uuid4(),
        trigger=trigger,
        occurred_at=at(10),
    )


def test_publish_assigns_increasing_sequence_numbers():
    bus = EventBus(history_size=10)
    assert bus.publish(_submission()) == 1
    assert bus.publish(_submission()) == 2
    assert bus.last_seq == 2
    assert [seq for seq, _e in bus.since(1)] == [2]


def test_history_is_bounded():
    bus = EventBus(history_size=2)
    for _ in range(5):
        bus.publish(_submission())
    assert [seq for seq, _e in bus.since(0)] == [4, 5]
    assert [seq for seq, _e in bus.since(0, limit=1)] == [4]


def test_subscribers_receive_events_and_can_unsubscribe():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(lambda seq, event: seen.append((seq, event.kind)))

    bus.publish(_submission())
    unsubscribe()
    bus.publish(_submission())

    assert seen == [(1, "submission")]


def test_failing_subscriber_does_not_block_others():
    bus = EventBus()
    seen = []

    def _boom(_seq, _event):
        raise RuntimeError("boom")

    bus.subscribe(_boom)
    bus.subscribe(lambda seq, _event: seen.append(seq))

    assert bus.publish(_submission()) == 1
    assert seen == [1]


def test_event_to_dict_is_json_friendly():
    event = BreakAlertEvent(
        attendance_id=uuid.uuid4(),
        break_id=uuid.uuid4(),
        student_name="Ada",
        classroom_id=uuid.uuid4(),
        exam_id=None,
        minutes_out=16,
        occurred_at=at(10, 16),
    )
    payload = event_to_dict(7, event)
    assert payload["seq"] == 7
    assert payload["kind"] == "break_alert"
    assert payload["attendance_id"] == str(event.attendance_id)
    assert payload["occurred_at"] == at(10, 16).isoformat()
    assert payload["exam_id"] is None


def test_tracker_alerts_once_per_break_and_rearms():
    tracker = BreakAlertTracker(threshold=timedelta(minutes=15))
    attendance_id, first, second = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()

    assert not tracker.should_alert(attendance_id, first, at(10), at(10, 15))
    assert tracker.should_alert(attendance_id, first, at(10), at(10, 16))
    assert not tracker.is_armed(attendance_id)
    assert not tracker.should_alert(attendance_id, first, at(10), at(10, 30))

    tracker.rearm(attendance_id)
    assert tracker.is_armed(attendance_id)
    assert tracker.should_alert(attendance_id, second, at(10, 21), at(10, 37))


def test_tracker_treats_a_new_break_as_a_new_episode():
    tracker = BreakAlertTracker(threshold=timedelta(minutes=15))
    attendance_id = uuid.uuid4()

    assert tracker.should_alert(attendance_id, uuid.uuid4(), at(10), at(10, 16))
    # A return the sweep never observed still yields a fresh alert for the next break.
    assert tracker.should_alert(attendance_id, uuid.uuid4(), at(10, 21), at(10, 37))
