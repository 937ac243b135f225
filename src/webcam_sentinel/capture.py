from __future__ import annotations
import threading
import time
from typing import Callable, Optional
import requests

from .camera import fetch_image
from .config import SentinelConfig
from .errors import CaptureError
from .logging_utils import log
from .models import CaptureStatus, RetentionBuffer, Snapshot
from .motion import MotionDetector


class Backoff:
    """Exponential retry delay: ``initial * factor**n`` capped at ``maximum``."""

    def __init__(self, initial: float = 0.1, maximum: float = 300.0, factor: float = 2.0):
        self.initial = initial
        self.maximum = maximum
        self.factor = factor
        self.attempt = 0

    def duration(self) -> float:
        d = min(self.maximum, self.initial * (self.factor ** self.attempt))
        if d < self.maximum:
            self.attempt += 1
        return d

    def reset(self) -> None:
        self.attempt = 0


class PreemptibleWait:
    """A sleep that ends early when ``wake`` is called.

    A wake that arrives while nobody is waiting is latched and consumed by the
    next ``wait`` call.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._woken = False

    def wake(self) -> None:
        with self._cond:
            self._woken = True
            self._cond.notify_all()

    def wait(self, timeout: float) -> bool:
        with self._cond:
            if timeout > 0:
                self._cond.wait_for(lambda: self._woken, timeout)
            woken = self._woken
            self._woken = False
            return woken


class CaptureLoop:
    def __init__(self, get_config: Callable[[], SentinelConfig], buffer: RetentionBuffer, detector: MotionDetector, *,
                 fetch: Optional[Callable[[SentinelConfig], bytes]] = None,
                 notify: Optional[Callable[[CaptureStatus], None]] = None):
        self.get_config = get_config
        self.buffer = buffer
        self.detector = detector
        self.session = requests.Session()
        self.fetch = fetch or (lambda cfg: fetch_image(cfg, self.session))
        self.notify = notify
        self.waiter = PreemptibleWait()
        cfg = get_config()
        self.backoff = Backoff(cfg.backoff_initial, cfg.backoff_max)
        self.last_capture = None
        self.frame_count = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name='webcam-capture', daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        self.waiter.wake()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self.session.close()

    def wake(self) -> None:
        """Cut the current wait short so the next cycle starts now."""
        self.waiter.wake()

    def _run(self):
        while not self._stop.is_set():
            t0 = time.monotonic()
            try:
                ok = self.run_cycle()
            except Exception as e:
                log(f'[webcam] capture cycle failed: {e!r}', 'error')
                ok = False
            if not ok:
                cfg = self.get_config()
                self.backoff.initial, self.backoff.maximum = cfg.backoff_initial, cfg.backoff_max
                delay = self.backoff.duration()
                log(f'[webcam] retrying in {delay:.1f}s', 'debug')
                if self.waiter.wait(delay):
                    continue
            else:
                self.backoff.reset()
            if self._stop.is_set():
                break
            wait = max(0.0, self.get_config().interval - (time.monotonic() - t0))
            self.waiter.wait(wait)

    def run_cycle(self) -> bool:
        """One capture; False only when the camera fetch or decode failed."""
        cfg = self.get_config()
        ok = True
        if cfg.enabled and cfg.origin:
            ok = self._capture(cfg)
        self._report(cfg)
        return ok

    def _capture(self, cfg: SentinelConfig) -> bool:
        try:
            raw = self.fetch(cfg)
            snap = Snapshot(raw)
        except CaptureError as e:
            log(f'[webcam] snap failed: {e}', 'warn')
            return False
        self.buffer.append(snap)
        self.last_capture = snap.captured_at
        self.frame_count += 1
        self.detector.submit(snap)
        return True

    def status(self, cfg: Optional[SentinelConfig] = None) -> CaptureStatus:
        cfg = cfg or self.get_config()
        return CaptureStatus(bool(cfg.enabled and cfg.origin), self.last_capture, len(self.buffer))

    def _report(self, cfg: SentinelConfig) -> None:
        if self.notify is None:
            return
        try:
            self.notify(self.status(cfg))
        except Exception as e:
            log(f'[webcam] status push failed: {e}', 'warn')
