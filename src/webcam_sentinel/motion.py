"""Motion detection between consecutive compared frames.

Strategy:
 1. Each new snapshot is compared with the last *compared* snapshot (the
    reference), not necessarily the previous capture.
 2. A pixel is eligible when the sum of its absolute channel deltas exceeds
    ``pixel_threshold``; motion is confirmed when the number of eligible
    pixels exceeds the configured ``threshold``.
 3. On confirmation both the reference and the current frame are handed to
    persistence so the stored pair shows the scene before and after.

Only one comparison runs at a time. A frame arriving while a comparison is
in flight is not compared at all (it is still in the retention buffer).
"""
from __future__ import annotations
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from .logging_utils import log
from .models import DiffStats, Snapshot
from .processing import PIXEL_DELTA_THRESHOLD


@dataclass(frozen=True)
class MotionVerdict:
    stats: DiffStats
    motion: bool


class MotionState:
    """Single-slot reference frame plus the single-flight busy token."""

    def __init__(self):
        self.reference: Optional[Snapshot] = None
        self._busy = threading.Lock()

    def try_acquire(self) -> bool:
        return self._busy.acquire(blocking=False)

    def release(self) -> None:
        self._busy.release()

    @property
    def busy(self) -> bool:
        return self._busy.locked()


class MotionDetector:
    def __init__(self, state: MotionState, on_motion: Callable[[Snapshot], None], *,
                 threshold: Callable[[], int], pixel_threshold: Callable[[], int] = lambda: PIXEL_DELTA_THRESHOLD,
                 inline: bool = False):
        self.state = state
        self.on_motion = on_motion
        self.threshold = threshold
        self.pixel_threshold = pixel_threshold
        self.inline = inline
        self.skipped = 0

    def submit(self, snap: Snapshot) -> bool:
        """Start a comparison in the background; False when one is already running."""
        if not self.state.try_acquire():
            self.skipped += 1
            log(f'[webcam] diff busy, not comparing {snap.id}', 'debug')
            return False
        if self.inline:
            self._run(snap)
        else:
            threading.Thread(target=self._run, args=(snap,), name='webcam-diff', daemon=True).start()
        return True

    def compare(self, snap: Snapshot) -> Optional[MotionVerdict]:
        if not self.state.try_acquire():
            self.skipped += 1
            return None
        return self._run(snap)

    def _run(self, curr: Snapshot) -> Optional[MotionVerdict]:
        try:
            return self._compare(curr)
        except Exception as e:
            log(f'[webcam] diff failed for {curr.id}: {e}', 'error')
            return None
        finally:
            self.state.release()

    def _compare(self, curr: Snapshot) -> Optional[MotionVerdict]:
        ref = self.state.reference
        verdict = None
        if ref is not None:
            stats = curr.compute_diff(ref, self.pixel_threshold())
            motion = stats.pixels_over_threshold > self.threshold()
            verdict = MotionVerdict(stats, motion)
            log(f'[webcam] diff {ref.id} -> {curr.id}: {stats.pixels_over_threshold} px', 'debug')
            if motion:
                log(f'[webcam] motion: {stats.pixels_over_threshold} px over threshold (limit {self.threshold()})')
                self.on_motion(ref)
                self.on_motion(curr)
        self.state.reference = curr
        return verdict
