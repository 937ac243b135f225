"""Shared helpers: lossless synthetic frames and fake HTTP sessions."""
import json as jsonlib
import threading
from datetime import datetime, timedelta, timezone

import cv2
import numpy as np
import pytest

from webcam_sentinel.models import Snapshot
from webcam_sentinel.sinks import Sink


def make_frame(w=20, h=20, value=0, changed=0, delta=120):
    """BGR frame with the first ``changed`` pixels (row-major) shifted by ``delta`` per channel."""
    arr = np.full((h, w, 3), value, dtype=np.uint8)
    flat = arr.reshape(-1, 3)
    flat[:changed] = np.clip(int(value) + delta, 0, 255)
    return arr


def encode_png(arr) -> bytes:
    ok, enc = cv2.imencode('.png', arr)
    assert ok
    return enc.tobytes()


_T0 = datetime(2024, 3, 5, 12, 30, 15, 250000, tzinfo=timezone.utc)


def make_snapshot(arr=None, offset_ms=0, **kw) -> Snapshot:
    if arr is None:
        arr = make_frame(**kw)
    return Snapshot(encode_png(arr), captured_at=_T0 + timedelta(milliseconds=offset_ms))


class RecordingSink(Sink):
    def __init__(self, name, accept=True):
        self.name = name
        self.accepted = []
        self._accept = accept
        self.closed = False

    def accept(self, snap):
        if not snap.claim(self.name):
            return False
        self.accepted.append(snap)
        return self._accept

    def close(self):
        self.closed = True


class FakeResponse:
    def __init__(self, status_code=200, payload=None, content=b'', reason='OK'):
        self.status_code = status_code
        self._payload = payload
        self.content = content
        self.reason = reason

    @property
    def text(self):
        if self._payload is not None:
            return jsonlib.dumps(self._payload)
        return self.content.decode(errors='replace')

    def json(self):
        if self._payload is None:
            raise ValueError('no json')
        return self._payload

    def close(self):
        pass


class FakeDropboxSession:
    """Answers the three Dropbox endpoints used by the sink and records calls."""

    def __init__(self, valid_token=True, existing_folders=(), fail_uploads=False):
        self.valid_token = valid_token
        self.existing = set(existing_folders)
        self.fail_uploads = fail_uploads
        self.calls = []
        self.uploads = []
        self.lock = threading.Lock()

    def post(self, url, headers=None, json=None, data=None, timeout=None):
        endpoint = url.split('/2/', 1)[1]
        with self.lock:
            self.calls.append(endpoint)
        if not self.valid_token:
            return FakeResponse(401, {'error_summary': 'invalid_access_token/'})
        if endpoint == 'users/get_current_account':
            return FakeResponse(200, {'name': {'display_name': 'Test User'}})
        if endpoint == 'files/create_folder_v2':
            path = json['path']
            if path in self.existing:
                return FakeResponse(409, {'error_summary': 'path/conflict/folder/..'})
            self.existing.add(path)
            return FakeResponse(200, {'metadata': {'path_display': path}})
        if endpoint == 'files/upload':
            if self.fail_uploads:
                return FakeResponse(500, None, b'server error')
            arg = jsonlib.loads(headers['Dropbox-API-Arg'])
            with self.lock:
                self.uploads.append((arg['path'], data))
            return FakeResponse(200, {'path_display': arg['path']})
        return FakeResponse(404, None, b'unknown endpoint')


@pytest.fixture
def dropbox_session():
    return FakeDropboxSession()
