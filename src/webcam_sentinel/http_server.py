"""HTTP surface for the webcam sentinel.

Endpoints (module prefix /m/webcam):
  GET  /m/webcam/snap                -> stored capture dates (JSON list)
  GET  /m/webcam/snap/<day>          -> stored frame names for a day (JSON list)
  GET  /m/webcam/snap/<day>/<time>   -> stored JPEG frame
  GET  /m/webcam/live/<index>        -> buffered frame, 0 = newest (400 when out of range)
  GET  /m/webcam/settings            -> current settings JSON
  PUT  /m/webcam/settings            -> replace settings (400 with error text when invalid)
  PUT  /m/webcam/move/<dir>          -> pan/tilt the camera (up|down|left|right)
  GET  /m/webcam/status              -> capture status
  GET  /health                       -> uptime ok
"""

from __future__ import annotations
import json
import threading
import time
from datetime import timezone
from email.utils import format_datetime
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import List, Optional
from urllib.parse import unquote, urlparse

from .errors import CaptureError, ConfigError, IndexOutOfRange, StorageUnavailable
from .logging_utils import log
from .sentinel import Sentinel


class SharedState:
    def __init__(self, sentinel: Sentinel):
        self.sentinel = sentinel
        self.start_time = time.time()


class SentinelHTTPHandler(BaseHTTPRequestHandler):
    protocol_version = 'HTTP/1.1'
    shared: SharedState = None  # type: ignore

    # ---------- helpers ----------
    def log_message(self, format, *args):  # silence
        return

    def _send_bytes(self, code: int, body: bytes, content_type: str = 'text/plain', extra_headers=None):
        self.send_response(code)
        self.send_header('Content-Type', content_type)
        self.send_header('Content-Length', str(len(body)))
        self.send_header('Cache-Control', 'no-store')
        if extra_headers:
            for k, v in extra_headers.items():
                self.send_header(k, v)
        self.end_headers()
        try:
            self.wfile.write(body)
        except BrokenPipeError:
            pass

    def _send_json(self, obj, code: int = 200):
        self._send_bytes(code, json.dumps(obj).encode(), 'application/json')

    def _send_error(self, code: int, msg: str):
        self._send_bytes(code, (msg + '\n').encode())

    def _route(self) -> Optional[List[str]]:
        parts = [unquote(p) for p in urlparse(self.path).path.split('/') if p]
        if parts[:2] != ['m', self.shared.sentinel.descriptor.id]:
            return None
        return parts[2:]

    # ---------- verbs ----------
    def do_GET(self):  # noqa: N802
        sentinel = self.shared.sentinel
        if urlparse(self.path).path == '/health':
            self._send_json({'ok': True, 'uptime': time.time() - self.shared.start_time}); return
        route = self._route()
        if not route:
            self._send_error(404, 'not found'); return
        try:
            head, args = route[0], route[1:]
            if head == 'snap' and len(args) <= 2:
                self._get_snap(args); return
            if head == 'live' and len(args) in (1, 2):
                self._get_live(args[0]); return
            if head == 'settings' and not args:
                self._send_json(sentinel.get_settings()); return
            if head == 'status' and not args:
                self._send_json(sentinel.status()); return
            self._send_error(404, 'not found')
        except Exception as e:  # pragma: no cover
            log(f'HTTP GET error {self.path}: {e}', 'error')
            try: self._send_error(500, 'Internal Error')
            except Exception: pass

    def _get_snap(self, args: List[str]):
        sentinel = self.shared.sentinel
        try:
            if not args:
                self._send_json(sentinel.list_dates()); return
            if len(args) == 1:
                self._send_json(sentinel.list_frames(args[0])); return
            data = sentinel.read_frame(args[0], args[1])
        except StorageUnavailable as e:
            self._send_error(404, str(e)); return
        except ValueError as e:
            self._send_error(400, str(e)); return
        except OSError:
            self._send_error(404, 'read fail'); return
        self._send_bytes(200, data, 'image/jpeg')

    def _get_live(self, raw_index: str):
        sentinel = self.shared.sentinel
        try:
            index = int(raw_index)
        except ValueError:
            self._send_error(400, 'index must be an integer'); return
        try:
            snap = sentinel.live(index)
        except IndexOutOfRange:
            self._send_error(400, f'index out of range: {raw_index}'); return
        headers = {
            'Interval-Millis': str(int(sentinel.config.interval * 1000)),
            'Last-Modified': format_datetime(snap.captured_at.astimezone(timezone.utc), usegmt=True),
            'Snap-Id': snap.id,
        }
        self._send_bytes(200, snap.raw, 'image/jpeg', headers)

    def do_PUT(self):  # noqa: N802
        route = self._route()
        if not route:
            self._send_error(404, 'not found'); return
        if route == ['settings']:
            self._put_settings(); return
        if len(route) == 2 and route[0] == 'move':
            try:
                self.shared.sentinel.move(route[1])
            except ValueError:
                self._send_error(400, 'invalid dir'); return
            except CaptureError as e:
                self._send_error(400, str(e)); return
            self._send_bytes(200, b'success'); return
        self._send_error(404, 'not found')

    def _put_settings(self):
        length = int(self.headers.get('Content-Length', '0') or 0)
        raw = self.rfile.read(length) if length > 0 else b''
        try:
            data = json.loads(raw.decode() or 'null')
        except (json.JSONDecodeError, UnicodeDecodeError):
            self._send_error(400, 'Expecting valid JSON'); return
        try:
            self.shared.sentinel.update_settings(data)
        except ConfigError as e:
            self._send_error(400, str(e)); return
        self._send_json(self.shared.sentinel.get_settings())


def start_http_server(host: str, port: int, shared: SharedState) -> Optional[ThreadingHTTPServer]:
    try:
        SentinelHTTPHandler.shared = shared
        server = ThreadingHTTPServer((host, port), SentinelHTTPHandler)
    except OSError as e:
        log(f'HTTP bind failed: {e}', 'error'); return None
    bound = server.server_address[1]
    log(f'HTTP on http://{host}:{bound} (endpoints: /m/webcam/snap /m/webcam/live/<i> /m/webcam/settings /m/webcam/move/<dir> /m/webcam/status /health)')
    def run():
        try:
            server.serve_forever()
        except Exception as e:
            log(f'HTTP server stopped: {e}', 'error')
    threading.Thread(target=run, daemon=True).start()
    return server
