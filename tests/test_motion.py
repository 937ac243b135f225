import threading
import time

from webcam_sentinel.models import Snapshot
from webcam_sentinel.motion import MotionDetector, MotionState
from webcam_sentinel.processing import PIXEL_DELTA_THRESHOLD, frame_delta

from conftest import encode_png, make_frame, make_snapshot


def test_identical_frames_have_no_motion():
    a = make_frame(16, 16, value=90)
    stats = frame_delta(a, a.copy())
    assert stats.computed
    assert stats.pixels_over_threshold == 0
    assert stats.pixel_delta_sum == 0


def test_counts_exactly_the_changed_pixels():
    ref = make_frame(16, 16, value=50)
    cur = make_frame(16, 16, value=50, changed=37, delta=100)
    stats = frame_delta(cur, ref)
    assert stats.pixels_over_threshold == 37
    assert stats.pixel_delta_sum == 37 * 300


def test_small_deltas_are_noise():
    ref = make_frame(8, 8, value=50)
    # 3 * 16 = 48 is not over the default cutoff
    cur = make_frame(8, 8, value=50, changed=64, delta=16)
    stats = frame_delta(cur, ref)
    assert stats.pixels_over_threshold == 0
    assert stats.pixel_delta_sum == 64 * 48
    assert PIXEL_DELTA_THRESHOLD == 48


def test_size_mismatch_reports_no_motion():
    stats = frame_delta(make_frame(8, 8, value=200), make_frame(16, 8, value=0))
    assert stats.computed
    assert stats.pixels_over_threshold == 0
    assert stats.pixel_delta_sum == 0


def test_diff_is_cached_on_snapshot():
    ref = make_snapshot(make_frame(8, 8))
    cur = make_snapshot(make_frame(8, 8, changed=10), offset_ms=1)
    first = cur.compute_diff(ref, 48)
    other = make_snapshot(make_frame(8, 8, changed=60), offset_ms=2)
    assert cur.compute_diff(other, 48) is first
    assert cur.diff.pixels_over_threshold == 10


def _detector(threshold, stored):
    return MotionDetector(MotionState(), stored.append, threshold=lambda: threshold, inline=True)


def test_motion_stores_reference_and_current():
    stored = []
    det = _detector(5, stored)
    a = make_snapshot(make_frame(10, 10))
    b = make_snapshot(make_frame(10, 10, changed=6), offset_ms=1)
    assert det.compare(a) is None
    verdict = det.compare(b)
    assert verdict.motion is True
    assert verdict.stats.pixels_over_threshold == 6
    assert stored == [a, b]
    assert det.state.reference is b


def test_threshold_is_strictly_greater():
    stored = []
    det = _detector(6, stored)
    det.compare(make_snapshot(make_frame(10, 10)))
    verdict = det.compare(make_snapshot(make_frame(10, 10, changed=6), offset_ms=1))
    assert verdict.motion is False
    assert stored == []


def test_busy_detector_skips_frame():
    stored = []
    det = _detector(0, stored)
    ref = make_snapshot(make_frame(10, 10))
    det.compare(ref)
    assert det.state.try_acquire()
    try:
        skipped = make_snapshot(make_frame(10, 10, changed=50), offset_ms=1)
        assert det.submit(skipped) is False
        assert det.compare(skipped) is None
    finally:
        det.state.release()
    assert det.skipped == 2
    assert stored == []
    assert det.state.reference is ref
    assert not skipped.diff.computed


def test_only_one_diff_in_flight():
    entered = threading.Event()
    release = threading.Event()
    active = []
    peak = []

    class SlowSnapshot(Snapshot):
        def compute_diff(self, reference, pixel_threshold):
            active.append(1)
            peak.append(len(active))
            entered.set()
            release.wait(2)
            active.pop()
            return super().compute_diff(reference, pixel_threshold)

    raw = encode_png(make_frame(6, 6))
    det = MotionDetector(MotionState(), lambda s: None, threshold=lambda: 1)
    det.compare(Snapshot(raw))
    assert det.submit(SlowSnapshot(raw)) is True
    assert entered.wait(2)
    assert det.submit(Snapshot(raw)) is False
    release.set()
    for _ in range(200):
        if not det.state.busy:
            break
        time.sleep(0.01)
    assert not det.state.busy
    assert max(peak) == 1


def test_failed_diff_releases_token():
    class BrokenSnapshot(Snapshot):
        def compute_diff(self, reference, pixel_threshold):
            raise RuntimeError('boom')

    raw = encode_png(make_frame(6, 6))
    det = MotionDetector(MotionState(), lambda s: None, threshold=lambda: 1, inline=True)
    det.compare(Snapshot(raw))
    assert det.submit(BrokenSnapshot(raw)) is True
    assert not det.state.busy
