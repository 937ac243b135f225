from __future__ import annotations
import queue
import re
import threading
from datetime import datetime, tzinfo
from pathlib import Path
from typing import List, Optional

from .logging_utils import log
from .models import Snapshot

DATE_RE = re.compile(r'\d{4}-\d{2}-\d{2}')
FRAME_RE = re.compile(r'\d{2}-\d{2}-\d{2}\.\d{3}\.jpg')

_STOP = object()


def date_dir_name(t: datetime, tz: tzinfo) -> str:
    return t.astimezone(tz).strftime('%Y-%m-%d')


def frame_name(t: datetime, tz: tzinfo) -> str:
    local = t.astimezone(tz)
    return local.strftime('%H-%M-%S') + f'.{local.microsecond // 1000:03d}.jpg'


class Sink:
    """A persistence destination. ``accept`` must never block the caller."""

    name = 'sink'

    def accept(self, snap: Snapshot) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    def close(self) -> None:
        pass


class QueuedSink(Sink):
    """Bounded FIFO in front of a single consumer thread.

    A full queue drops the newest arrival; queued items are never evicted.
    Items still queued when the sink is closed are dropped.
    """

    def __init__(self, name: str, size: int = 100):
        self.name = name
        self.size = size
        self._queue: queue.Queue = queue.Queue(maxsize=size)
        self._lock = threading.Lock()
        self._closed = False
        self.dropped = 0
        self._worker = threading.Thread(target=self._drain, name=f'{name}-sink', daemon=True)
        self._worker.start()

    def accept(self, snap: Snapshot) -> bool:
        with self._lock:
            if self._closed:
                return False
            if not snap.claim(self.name):
                return False
            try:
                self._queue.put_nowait(snap)
            except queue.Full:
                self.dropped += 1
                log(f'[{self.name}] queue full ({self.size}), dropping {snap.id}', 'warn')
                return False
        return True

    def pending(self) -> int:
        return self._queue.qsize()

    def join(self) -> None:
        self._queue.join()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            dropped = 0
            while True:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    break
                self._queue.task_done()
                dropped += 1
            self._queue.put_nowait(_STOP)
        if dropped:
            log(f'[{self.name}] closed with {dropped} unflushed frames', 'warn')

    def _drain(self):
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                try:
                    self.store(item)
                except Exception as e:
                    log(f'[{self.name}] store failed for {item.id}: {e}', 'error')
            finally:
                self._queue.task_done()

    def store(self, snap: Snapshot) -> None:  # pragma: no cover - interface only
        raise NotImplementedError


class DiskSink(QueuedSink):
    def __init__(self, base: str, tz: tzinfo, size: int = 100):
        self.base = Path(base)
        self.tz = tz
        super().__init__('disk', size)

    def path_for(self, snap: Snapshot) -> Path:
        return self.base / date_dir_name(snap.captured_at, self.tz) / frame_name(snap.captured_at, self.tz)

    def store(self, snap: Snapshot) -> None:
        target = self.path_for(snap)
        try:
            target.parent.mkdir(exist_ok=True)
        except OSError as e:
            log(f'[disk] mkdir {target.parent} failed: {e}', 'error')
            return
        try:
            target.write_bytes(snap.raw)
        except OSError as e:
            log(f'[disk] write {target} failed: {e}', 'error')
            return
        snap.mark_stored()
        log(f'[disk] wrote snap {snap.id} -> {target} (diff: {snap.diff.pixels_over_threshold})')


class Persister:
    """Routes confirmed frames to the configured sinks.

    The cloud sink is tried first; the disk sink receives the frame when the
    cloud did not take it, or always when ``disk_force`` is set.
    """

    def __init__(self, disk: Optional[Sink] = None, cloud: Optional[Sink] = None, disk_force: bool = False):
        self._lock = threading.Lock()
        self.disk = disk
        self.cloud = cloud
        self.disk_force = disk_force

    def store(self, snap: Snapshot) -> None:
        # a frame can be the current of one motion event and the reference of the next
        if not snap.claim('persist'):
            return
        with self._lock:
            disk, cloud, force = self.disk, self.cloud, self.disk_force
        enqueued = cloud is not None and cloud.accept(snap)
        if disk is not None and (not enqueued or force):
            disk.accept(snap)

    def replace(self, *, disk: Optional[Sink], cloud: Optional[Sink], disk_force: bool) -> None:
        with self._lock:
            old = [s for s in (self.disk, self.cloud) if s is not None and s not in (disk, cloud)]
            self.disk, self.cloud, self.disk_force = disk, cloud, disk_force
        for sink in old:
            sink.close()

    def close(self) -> None:
        self.replace(disk=None, cloud=None, disk_force=False)


def _check_name(pattern: re.Pattern, name: str, what: str) -> str:
    if not pattern.fullmatch(name):
        raise ValueError(f'invalid {what}: {name}')
    return name


def list_dates(base: str) -> List[str]:
    root = Path(base)
    return sorted(p.name for p in root.iterdir() if p.is_dir() and DATE_RE.fullmatch(p.name))


def list_frames(base: str, date: str) -> List[str]:
    day = Path(base) / _check_name(DATE_RE, date, 'date')
    return sorted(p.name for p in day.iterdir() if p.is_file() and FRAME_RE.fullmatch(p.name))


def read_frame(base: str, date: str, name: str) -> bytes:
    if not name.endswith('.jpg'):
        name += '.jpg'
    path = Path(base) / _check_name(DATE_RE, date, 'date') / _check_name(FRAME_RE, name, 'frame')
    return path.read_bytes()
