"""Dropbox upload sink.

Talks to the Dropbox HTTP API v2 directly with ``requests``: one RPC call to
validate the token, one to create each date folder and one content upload per
frame. Uploads are at-most-once; a failed upload is logged and dropped.
"""
from __future__ import annotations
import json
import posixpath
from datetime import tzinfo
from typing import Optional, Set
import requests

from .errors import DropboxConflict, DropboxError
from .logging_utils import log
from .models import Snapshot
from .sinks import QueuedSink, date_dir_name, frame_name

API_URL = 'https://api.dropboxapi.com/2'
CONTENT_URL = 'https://content.dropboxapi.com/2'


class DropboxClient:
    def __init__(self, token: str, session: Optional[requests.Session] = None, timeout: float = 30.0):
        self.session = session or requests.Session()
        self.token = token
        self.timeout = timeout

    def _headers(self, extra=None):
        headers = {'Authorization': f'Bearer {self.token}'}
        if extra:
            headers.update(extra)
        return headers

    def _check(self, resp: requests.Response, what: str) -> dict:
        if resp.status_code == 200:
            try:
                return resp.json()
            except ValueError:
                return {}
        summary = ''
        try:
            summary = resp.json().get('error_summary', '')
        except ValueError:
            summary = resp.text.strip()
        if resp.status_code == 409 and summary.startswith('path/conflict'):
            raise DropboxConflict(f'{what}: {summary}', resp.status_code, summary)
        raise DropboxError(f'{what}: {resp.status_code} {summary}'.strip(), resp.status_code, summary)

    def _rpc(self, endpoint: str, payload=None) -> dict:
        try:
            if payload is None:
                resp = self.session.post(f'{API_URL}/{endpoint}', headers=self._headers(), timeout=self.timeout)
            else:
                resp = self.session.post(f'{API_URL}/{endpoint}', headers=self._headers(), json=payload,
                                         timeout=self.timeout)
        except requests.RequestException as e:
            raise DropboxError(f'{endpoint}: {e}') from e
        return self._check(resp, endpoint)

    def current_account(self) -> dict:
        return self._rpc('users/get_current_account')

    def create_folder(self, path: str) -> dict:
        return self._rpc('files/create_folder_v2', {'path': path, 'autorename': False})

    def upload(self, path: str, data: bytes) -> dict:
        arg = {'path': path, 'mode': 'add', 'autorename': True, 'mute': True}
        headers = self._headers({
            'Dropbox-API-Arg': json.dumps(arg),
            'Content-Type': 'application/octet-stream',
        })
        try:
            resp = self.session.post(f'{CONTENT_URL}/files/upload', headers=headers, data=data, timeout=self.timeout)
        except requests.RequestException as e:
            raise DropboxError(f'upload: {e}') from e
        return self._check(resp, 'upload')


class DropboxSink(QueuedSink):
    """Queued uploads into ``<base>/<YYYY-MM-DD>/<HH-MM-SS.mmm>.jpg``.

    The token is validated before the consumer starts, so a bad credential
    raises DropboxError from the constructor and no sink is created.
    """

    def __init__(self, client: DropboxClient, base: str, tz: tzinfo, size: int = 100):
        account = client.current_account()
        name = (account.get('name') or {}).get('display_name', '?')
        log(f'[dropbox] dropbox user: {name}')
        self.client = client
        self.base = base or '/'
        self.tz = tz
        self._folders: Set[str] = set()
        super().__init__('dropbox', size)

    def folder_for(self, snap: Snapshot) -> str:
        return posixpath.join(self.base, date_dir_name(snap.captured_at, self.tz))

    def _ensure_folder(self, folder: str) -> None:
        if folder in self._folders:
            return
        try:
            self.client.create_folder(folder)
            log(f'[dropbox] created: {folder}')
        except DropboxConflict:
            pass
        self._folders.add(folder)

    def store(self, snap: Snapshot) -> None:
        folder = self.folder_for(snap)
        try:
            self._ensure_folder(folder)
        except DropboxError as e:
            log(f'[dropbox] mkdir {folder} failed: {e}', 'error')
            return
        path = posixpath.join(folder, frame_name(snap.captured_at, self.tz))
        log(f'[dropbox] upload: {path}', 'debug')
        try:
            self.client.upload(path, snap.raw)
        except DropboxError as e:
            log(f'[dropbox] upload {path} failed: {e}', 'error')
            return
        snap.mark_stored()
        log(f'[dropbox] uploaded {path}, {self.pending()} remaining')
