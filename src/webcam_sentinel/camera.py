from __future__ import annotations
from typing import Optional
import requests

from .config import SentinelConfig
from .errors import CaptureError
from .logging_utils import log

# decoder_control.cgi pan/tilt command codes
MOVE_COMMANDS = {
    'up': '2',
    'down': '0',
    'right': '6',
    'left': '4',
}


def fetch_image(cfg: SentinelConfig, session: Optional[requests.Session] = None) -> bytes:
    if not cfg.origin:
        raise CaptureError('camera host not configured')
    http = session or requests
    try:
        resp = http.get(cfg.origin + 'snapshot.cgi', params={'user': cfg.user, 'pwd': cfg.password},
                        timeout=cfg.fetch_timeout)
    except requests.RequestException as e:
        raise CaptureError(f'request: {e}') from e
    try:
        if resp.status_code != 200:
            raise CaptureError(f'camera returned {resp.status_code}')
        return resp.content
    finally:
        resp.close()


def move_camera(cfg: SentinelConfig, direction: str, session: Optional[requests.Session] = None) -> None:
    cmd = MOVE_COMMANDS.get(direction)
    if cmd is None:
        raise ValueError(f'invalid dir: {direction}')
    if not cfg.origin:
        raise CaptureError('camera host not configured')
    http = session or requests
    params = {'loginuse': cfg.user, 'loginpas': cfg.password, 'command': cmd, 'onestep': '1'}
    try:
        resp = http.get(cfg.origin + 'decoder_control.cgi', params=params, timeout=cfg.fetch_timeout)
    except requests.RequestException as e:
        raise CaptureError(f'req invalid: {e}') from e
    if resp.status_code != 200:
        raise CaptureError(f'req failed: {resp.status_code} {resp.reason}')
    log(f'[webcam] move: {direction}')
