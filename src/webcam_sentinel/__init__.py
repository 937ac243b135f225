from .config import SentinelConfig, load_config, parse_settings
from .models import Snapshot, RetentionBuffer, DiffStats, CaptureStatus
from .processing import frame_delta
from .motion import MotionDetector, MotionState
from .sinks import DiskSink, Persister
from .dropbox_sink import DropboxClient, DropboxSink
from .capture import CaptureLoop, Backoff, PreemptibleWait
from .sentinel import Sentinel, ModuleDescriptor
from .cli import main

__all__ = [
    'SentinelConfig','load_config','parse_settings','Snapshot','RetentionBuffer','DiffStats','CaptureStatus',
    'frame_delta','MotionDetector','MotionState','DiskSink','Persister','DropboxClient','DropboxSink',
    'CaptureLoop','Backoff','PreemptibleWait','Sentinel','ModuleDescriptor','main'
]
