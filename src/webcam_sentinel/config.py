from __future__ import annotations
import dataclasses
import os
import re
from dataclasses import dataclass, asdict
from typing import Any, Mapping, Optional
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from .errors import ConfigError
from .logging_utils import LEVELS

MIN_INTERVAL = 0.1
DEFAULT_THRESHOLD = 4000


@dataclass(frozen=True)
class SentinelConfig:
    enabled: bool = False
    host: str = ''
    user: str = ''
    password: str = ''
    interval: float = 1.0
    threshold: int = DEFAULT_THRESHOLD
    pixel_threshold: int = 48
    disk_base: str = ''
    disk_force: bool = False
    dropbox_token: str = ''
    dropbox_base: str = '/'
    timezone: str = 'UTC'
    buffer_size: int = 100
    queue_size: int = 100
    fetch_timeout: float = 10.0
    backoff_initial: float = 0.1
    backoff_max: float = 300.0
    log_level: str = 'info'

    @property
    def origin(self) -> str:
        return f'http://{self.host}/' if self.host else ''

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


FIELDS = {f.name: f for f in dataclasses.fields(SentinelConfig)}

# Accept the camelCase names used by the dashboard as aliases.
ALIASES = {
    'pass': 'password',
    'diskBase': 'disk_base',
    'diskForce': 'disk_force',
    'dropboxApi': 'dropbox_token',
    'dropboxBase': 'dropbox_base',
    'bufferSize': 'buffer_size',
    'queueSize': 'queue_size',
    'pixelThreshold': 'pixel_threshold',
}

_DURATION_RE = re.compile(r'(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)')
_DURATION_UNITS = {'ns': 1e-9, 'us': 1e-6, 'µs': 1e-6, 'ms': 1e-3, 's': 1.0, 'm': 60.0, 'h': 3600.0}


def parse_duration(value: Any) -> float:
    """Seconds from a number, an integer string or a ``1m30s`` style string."""
    if isinstance(value, bool):
        raise ConfigError(f'Invalid duration: {value!r}')
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if re.fullmatch(r'\d+(\.\d+)?', text):
        return float(text)
    pos = 0
    total = 0.0
    for m in _DURATION_RE.finditer(text):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    if pos == 0 or pos != len(text):
        raise ConfigError(f'Invalid duration: {value!r}')
    return total


def format_duration(seconds: float) -> str:
    ms = int(round(seconds * 1000))
    if ms % 1000 == 0:
        return f'{ms // 1000}s'
    return f'{ms}ms'


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def _coerce(name: str, value: Any) -> Any:
    try:
        if name == 'interval':
            return parse_duration(value)
        kind = FIELDS[name].type
        if kind == 'bool':
            return _coerce_bool(value)
        if kind == 'int':
            return int(value)
        if kind == 'float':
            return float(value)
        return '' if value is None else str(value).strip()
    except (TypeError, ValueError) as e:
        raise ConfigError(f'Invalid {name}: {value!r}') from e


def parse_settings(raw: Optional[Mapping[str, Any]], previous: Optional[SentinelConfig] = None) -> SentinelConfig:
    """Validate a settings payload merged over ``previous``.

    ``raw`` of None means "use defaults". Raises ConfigError and leaves
    nothing modified when any field is invalid.
    """
    base = previous or SentinelConfig()
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ConfigError('Expecting a JSON object')
    values = asdict(base)
    for key, value in raw.items():
        name = ALIASES.get(key, key)
        if name not in FIELDS:
            continue
        values[name] = _coerce(name, value)

    if values['interval'] < MIN_INTERVAL:
        values['interval'] = MIN_INTERVAL
    if values['threshold'] <= 0:
        values['threshold'] = DEFAULT_THRESHOLD
    if values['pixel_threshold'] < 0:
        raise ConfigError('Invalid pixel threshold')
    if values['buffer_size'] < 1 or values['queue_size'] < 1:
        raise ConfigError('Buffer and queue sizes must be positive')
    if values['fetch_timeout'] <= 0:
        raise ConfigError('Invalid fetch timeout')
    if values['backoff_initial'] <= 0 or values['backoff_max'] < values['backoff_initial']:
        raise ConfigError('Invalid backoff bounds')
    if values['log_level'] == 'warning':
        values['log_level'] = 'warn'
    if values['log_level'] not in LEVELS:
        raise ConfigError(f"Invalid log level: {values['log_level']}")

    host = values['host']
    if host:
        try:
            parsed = urlparse(f'http://{host}/')
            parsed.port  # raises on a malformed port
        except ValueError as e:
            raise ConfigError('Invalid host') from e
        if not parsed.hostname or parsed.path != '/' or parsed.query or parsed.fragment:
            raise ConfigError('Invalid host')
    else:
        values['enabled'] = False

    disk_base = values['disk_base']
    if disk_base:
        if not os.path.exists(disk_base):
            raise ConfigError('Invalid disk base')
        if not os.path.isdir(disk_base):
            raise ConfigError('Invalid disk base dir')

    try:
        ZoneInfo(values['timezone'])
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"Invalid timezone: {values['timezone']}") from e

    if not values['dropbox_base']:
        values['dropbox_base'] = '/'
    if not values['dropbox_base'].startswith('/'):
        values['dropbox_base'] = '/' + values['dropbox_base']
    return SentinelConfig(**values)


def to_settings(cfg: SentinelConfig) -> dict:
    data = asdict(cfg)
    data['interval'] = format_duration(cfg.interval)
    return data


def load_config(path: str) -> SentinelConfig:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        data = {}
    except yaml.YAMLError as e:
        raise ConfigError(f'Invalid config file {path}: {e}') from e
    return parse_settings(data)


def save_config(cfg: SentinelConfig, path: str):
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(to_settings(cfg), f, sort_keys=False)
