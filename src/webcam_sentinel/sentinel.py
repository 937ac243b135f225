from __future__ import annotations
import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional
import requests

from .camera import move_camera
from .capture import CaptureLoop
from .config import SentinelConfig, parse_settings, save_config, to_settings
from .dropbox_sink import DropboxClient, DropboxSink
from .errors import DropboxError, StorageUnavailable
from .logging_utils import log, set_level
from .models import CaptureStatus, RetentionBuffer, Snapshot
from .motion import MotionDetector, MotionState
from .sinks import DiskSink, Persister, list_dates, list_frames, read_frame


@dataclass(frozen=True)
class ModuleDescriptor:
    """What a dashboard module provides, declared once instead of probed."""
    id: str
    has_routes: bool = False
    has_status: bool = False
    has_settings: bool = False


class Sentinel:
    descriptor = ModuleDescriptor('webcam', has_routes=True, has_status=True, has_settings=True)

    def __init__(self, config: Optional[SentinelConfig] = None, *, settings_path: Optional[str] = None,
                 fetch: Optional[Callable[[SentinelConfig], bytes]] = None,
                 notify: Optional[Callable[[CaptureStatus], None]] = None,
                 session: Optional[requests.Session] = None, inline_diff: bool = False):
        cfg = config or SentinelConfig()
        self._lock = threading.Lock()
        self._update_lock = threading.Lock()
        self._config = cfg
        self.settings_path = settings_path
        self.session = session
        self.notify = notify
        self.last_status: Optional[CaptureStatus] = None
        self.buffer = RetentionBuffer(cfg.buffer_size)
        self.persister = Persister()
        self.motion = MotionState()
        self.detector = MotionDetector(self.motion, self.persister.store,
                                       threshold=lambda: self.config.threshold,
                                       pixel_threshold=lambda: self.config.pixel_threshold,
                                       inline=inline_diff)
        self.loop = CaptureLoop(lambda: self.config, self.buffer, self.detector, fetch=fetch, notify=self._on_status)
        self._install_sinks(SentinelConfig(), cfg)

    @property
    def config(self) -> SentinelConfig:
        with self._lock:
            return self._config

    def start(self) -> None:
        self.loop.start()

    def stop(self) -> None:
        self.loop.stop()
        self.persister.close()

    # ---------- settings ----------
    def get_settings(self) -> dict:
        return to_settings(self.config)

    def update_settings(self, raw: Optional[Mapping[str, Any]]) -> SentinelConfig:
        """Validate and apply a settings payload; ConfigError leaves everything as it was."""
        with self._update_lock:
            prev = self.config
            cfg = parse_settings(raw, prev)
            self._install_sinks(prev, cfg)
            with self._lock:
                self._config = cfg
            if cfg.log_level != prev.log_level:
                set_level(cfg.log_level)
            self.buffer.resize(cfg.buffer_size)
            if self.settings_path:
                try:
                    save_config(cfg, self.settings_path)
                except OSError as e:
                    log(f'[webcam] failed to store settings: {e}', 'error')
            log(f'[webcam] updated settings: enabled={cfg.enabled} host={cfg.host or "-"} '
                f'interval={cfg.interval}s threshold={cfg.threshold}')
        self.loop.wake()
        return cfg

    def _install_sinks(self, prev: SentinelConfig, cfg: SentinelConfig) -> None:
        disk = self.persister.disk
        same_disk = (prev.disk_base, prev.timezone, prev.queue_size) == (cfg.disk_base, cfg.timezone, cfg.queue_size)
        if not cfg.disk_base:
            disk = None
        elif disk is None or not same_disk:
            disk = DiskSink(cfg.disk_base, cfg.tz, cfg.queue_size)

        cloud = self.persister.cloud
        same_cloud = ((prev.dropbox_token, prev.dropbox_base, prev.timezone, prev.queue_size) ==
                      (cfg.dropbox_token, cfg.dropbox_base, cfg.timezone, cfg.queue_size))
        if not cfg.dropbox_token:
            cloud = None
        elif cloud is None or not same_cloud:
            try:
                client = DropboxClient(cfg.dropbox_token, self.session)
                cloud = DropboxSink(client, cfg.dropbox_base, cfg.tz, cfg.queue_size)
            except DropboxError as e:
                log(f'[webcam] dropbox login failed, cloud storage disabled: {e}', 'error')
                cloud = None
        self.persister.replace(disk=disk, cloud=cloud, disk_force=cfg.disk_force)

    # ---------- status ----------
    def _on_status(self, status: CaptureStatus) -> None:
        self.last_status = status
        if self.notify is not None:
            self.notify(status)

    def status(self) -> dict:
        cfg = self.config
        data = self.loop.status(cfg).to_dict()
        data['intervalMillis'] = int(cfg.interval * 1000)
        data['diffSkipped'] = self.detector.skipped
        cloud = self.persister.cloud
        data['cloudPending'] = cloud.pending() if cloud is not None else None
        return data

    # ---------- frames ----------
    def live(self, index: int) -> Snapshot:
        return self.buffer.get(index)

    def _disk_base(self) -> str:
        base = self.config.disk_base
        if not base:
            raise StorageUnavailable('disk disabled')
        return base

    def list_dates(self) -> List[str]:
        return list_dates(self._disk_base())

    def list_frames(self, date: str) -> List[str]:
        return list_frames(self._disk_base(), date)

    def read_frame(self, date: str, time_of_day: str) -> bytes:
        return read_frame(self._disk_base(), date, time_of_day)

    def move(self, direction: str) -> None:
        move_camera(self.config, direction, self.session)
