from conftest import FakeClock
from shared import playback_state
from shared.notifications import DownloadNotificationCenter


def test_add_update_and_list():
    center = DownloadNotificationCenter(clock=FakeClock())
    center.add_download("u1", "d1", "Sunset Set")
    center.update_progress("u1", "d1", 40)

    items = center.list("u1")
    assert [n.to_dict() for n in items] == [
        {"id": "d1", "title": "Sunset Set", "progress": 40.0, "status": "downloading"}
    ]
    assert center.list("u2") == []


def test_progress_is_capped():
    center = DownloadNotificationCenter(clock=FakeClock())
    center.add_download("u1", "d1", "T")
    center.update_progress("u1", "d1", 250)
    assert center.list("u1")[0].progress == 100.0
    assert center.update_progress("u1", "unknown", 10) is None


def test_completed_notifications_expire_after_delay():
    clock = FakeClock()
    center = DownloadNotificationCenter(clock=clock)
    center.add_download("u1", "d1", "T")
    center.complete_download("u1", "d1")

    done = center.list("u1")[0]
    assert done.status.value == "completed"
    assert done.progress == 100.0

    clock.advance(1)
    assert len(center.list("u1")) == 1
    clock.advance(1)
    assert center.list("u1") == []


def test_failed_notifications_stay_until_removed():
    clock = FakeClock()
    center = DownloadNotificationCenter(clock=clock)
    center.add_download("u1", "d1", "T")
    center.fail_download("u1", "d1")
    clock.advance(60)
    assert center.list("u1")[0].status.value == "error"
    assert center.remove_notification("u1", "d1")
    assert not center.remove_notification("u1", "d1")


def test_change_callbacks_receive_scope():
    center = DownloadNotificationCenter(clock=FakeClock())
    seen = []

    def record(scope, notification):
        seen.append((scope, notification.status.value, notification.progress))

    def broken(scope, notification):
        raise RuntimeError("boom")

    center.add_change_callback(record)
    center.add_change_callback(broken)
    center.add_download("u1", "d1", "T")
    center.update_progress("u1", "d1", 50)
    center.complete_download("u1", "d1")

    assert seen == [("u1", "downloading", 0.0), ("u1", "downloading", 50.0), ("u1", "completed", 100.0)]

    center.remove_change_callback(record)
    center.add_download("u1", "d2", "T2")
    assert len(seen) == 3


def test_playback_state_one_track_per_user():
    playback_state.reset()
    assert playback_state.get_current_track("u1") is None

    assert playback_state.set_current_track("u1", "t1") is None
    assert playback_state.set_current_track("u1", "t2") == "t1"
    assert playback_state.set_current_track("u2", "t9") is None

    assert playback_state.get_current_track("u1") == "t2"
    assert playback_state.get_current_track("u2") == "t9"

    assert playback_state.set_current_track("u1", None) == "t2"
    assert playback_state.get_state("u1") == {"track_id": None, "updated_at": None}
    playback_state.reset()
