from __future__ import annotations
import argparse
import signal
import sys
import threading
import time
from pathlib import Path

from .config import load_config
from .errors import ConfigError
from .http_server import SharedState, start_http_server
from .logging_utils import log, set_level
from .models import CaptureStatus
from .sentinel import Sentinel


def parse_args(argv=None):
    p = argparse.ArgumentParser(description='Webcam sentinel: periodic capture, motion detection and frame archival')
    p.add_argument('--config', default='config.yaml', help='YAML settings file (created on first settings update)')
    p.add_argument('--http-port', type=int, default=None)
    p.add_argument('--http-host', default='0.0.0.0')
    p.add_argument('--run-seconds', type=float, default=None)
    p.add_argument('--log-level', choices=['debug', 'info', 'warn', 'error'], help='Override config log_level')
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        log(f'Invalid configuration: {e}', 'error')
        sys.exit(2)
    set_level(args.log_level or cfg.log_level)

    def report(status: CaptureStatus):
        log(f'[webcam] status capturing={status.is_capturing} frames={status.buffered_frames}', 'debug')

    sentinel = Sentinel(cfg, settings_path=str(Path(args.config)), notify=report)
    stop_flag = threading.Event()

    server = None
    if args.http_port is not None:
        server = start_http_server(args.http_host, args.http_port, SharedState(sentinel))

    def handle_signal(sig, frame):  # type: ignore
        stop_flag.set()
    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    log(f'Starting webcam sentinel (enabled={cfg.enabled}, interval={cfg.interval}s, threshold={cfg.threshold})')
    sentinel.start()
    t_start = time.monotonic()
    while not stop_flag.is_set():
        if args.run_seconds is not None and time.monotonic() - t_start >= args.run_seconds:
            break
        stop_flag.wait(0.2)

    sentinel.stop()
    if server is not None:
        server.shutdown()
    log(f'Stopped after {sentinel.loop.frame_count} frames')


if __name__ == '__main__':  # pragma: no cover
    main()
