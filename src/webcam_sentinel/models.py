from __future__ import annotations
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Deque, List, Optional, Set, Tuple
import numpy as np
import cv2

from .errors import IndexOutOfRange, SnapshotDecodeError


@dataclass(frozen=True)
class DiffStats:
    computed: bool = False
    pixel_delta_sum: int = 0
    pixels_over_threshold: int = 0


NOT_COMPUTED = DiffStats()


@dataclass(frozen=True)
class CaptureStatus:
    is_capturing: bool
    last_capture_time: Optional[datetime]
    buffered_frames: int

    def to_dict(self):
        return {
            'isCapturing': self.is_capturing,
            'lastCaptureTime': self.last_capture_time.isoformat() if self.last_capture_time else None,
            'bufferedFrameCount': self.buffered_frames,
        }


def snapshot_id(t: datetime) -> str:
    return t.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')


class Snapshot:
    """One captured frame: encoded bytes, decoded pixels and cached diff stats.

    ``raw`` and ``decoded`` are never modified after construction. The only
    mutable state is the diff cache, the per-sink claims and the ``stored``
    flag, all guarded by the instance lock.
    """

    def __init__(self, raw: bytes, captured_at: Optional[datetime] = None, decoded: Optional[np.ndarray] = None):
        self.captured_at = captured_at or datetime.now(timezone.utc)
        self.id = snapshot_id(self.captured_at)
        self.raw = bytes(raw)
        if decoded is None:
            decoded = decode_image(self.raw)
        else:
            decoded = np.array(decoded, dtype=np.uint8)
        decoded.setflags(write=False)
        self.decoded = decoded
        self._lock = threading.Lock()
        self._diff = NOT_COMPUTED
        self._claims: Set[str] = set()
        self._stored = False

    def __repr__(self):
        return f'Snapshot({self.id}, {self.shape[1]}x{self.shape[0]}, {len(self.raw)} bytes)'

    @property
    def shape(self) -> Tuple[int, int]:
        return self.decoded.shape[0], self.decoded.shape[1]

    @property
    def diff(self) -> DiffStats:
        return self._diff

    @property
    def stored(self) -> bool:
        return self._stored

    def compute_diff(self, reference: 'Snapshot', pixel_threshold: int) -> DiffStats:
        """Diff against ``reference`` once; later calls return the cached stats."""
        from .processing import frame_delta
        with self._lock:
            if not self._diff.computed:
                self._diff = frame_delta(self.decoded, reference.decoded, pixel_threshold)
            return self._diff

    def claim(self, sink: str) -> bool:
        """Atomically reserve this snapshot for one write by ``sink``."""
        with self._lock:
            if sink in self._claims:
                return False
            self._claims.add(sink)
            return True

    def mark_stored(self) -> None:
        with self._lock:
            self._stored = True


def decode_image(raw: bytes) -> np.ndarray:
    if not raw:
        raise SnapshotDecodeError('empty image')
    img = cv2.imdecode(np.frombuffer(raw, dtype=np.uint8), cv2.IMREAD_COLOR)
    if img is None:
        raise SnapshotDecodeError(f'undecodable image ({len(raw)} bytes)')
    return img


class RetentionBuffer:
    """Fixed-capacity history of recent snapshots, newest at index 0."""

    def __init__(self, size: int = 100):
        if size < 1:
            raise ValueError('buffer size must be positive')
        self.size = size
        self._lock = threading.Lock()
        self.buf: Deque[Snapshot] = deque(maxlen=size)

    def __len__(self):
        with self._lock:
            return len(self.buf)

    def append(self, snap: Snapshot) -> None:
        # deque(maxlen) evicts the oldest entry in the same step
        with self._lock:
            self.buf.append(snap)

    def get(self, index: int) -> Snapshot:
        with self._lock:
            total = len(self.buf)
            if total == 0 or index < 0 or index >= total:
                raise IndexOutOfRange(f'index out of range: {index} (buffered: {total})')
            return self.buf[total - 1 - index]

    def latest(self) -> Optional[Snapshot]:
        with self._lock:
            return self.buf[-1] if self.buf else None

    def snapshots(self) -> List[Snapshot]:
        with self._lock:
            return list(reversed(self.buf))

    def resize(self, size: int) -> None:
        if size < 1:
            raise ValueError('buffer size must be positive')
        with self._lock:
            if size != self.size:
                self.buf = deque(self.buf, maxlen=size)
                self.size = size
