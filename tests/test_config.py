import pytest

from webcam_sentinel.config import (
    SentinelConfig, load_config, parse_duration, parse_settings, save_config, to_settings,
)
from webcam_sentinel.errors import ConfigError


def test_defaults():
    cfg = parse_settings(None)
    assert cfg.enabled is False
    assert cfg.interval == 1.0
    assert cfg.threshold == 4000
    assert cfg.dropbox_base == '/'
    assert cfg.buffer_size == 100 and cfg.queue_size == 100


@pytest.mark.parametrize('raw,expected', [
    (2, 2.0),
    ('3', 3.0),
    ('500ms', 0.5),
    ('1m30s', 90.0),
    ('1.5s', 1.5),
])
def test_parse_duration(raw, expected):
    assert parse_duration(raw) == pytest.approx(expected)


@pytest.mark.parametrize('raw', ['soon', '5 parsecs', '', True])
def test_parse_duration_rejects(raw):
    with pytest.raises(ConfigError):
        parse_duration(raw)


def test_interval_is_floored():
    cfg = parse_settings({'interval': '10ms'})
    assert cfg.interval == pytest.approx(0.1)


def test_threshold_defaults_when_not_positive():
    assert parse_settings({'threshold': 0}).threshold == 4000
    assert parse_settings({'threshold': 150}).threshold == 150


def test_enabled_without_host_is_disabled():
    cfg = parse_settings({'enabled': True})
    assert cfg.enabled is False
    cfg = parse_settings({'enabled': True, 'host': 'cam.local:8080'})
    assert cfg.enabled is True
    assert cfg.origin == 'http://cam.local:8080/'


@pytest.mark.parametrize('host', ['cam.local:notaport', 'cam/path', 'cam?x=1', ':80'])
def test_invalid_host(host):
    with pytest.raises(ConfigError, match='Invalid host'):
        parse_settings({'host': host})


def test_disk_base_must_be_existing_dir(tmp_path):
    with pytest.raises(ConfigError, match='Invalid disk base'):
        parse_settings({'diskBase': str(tmp_path / 'missing')})
    f = tmp_path / 'file'
    f.write_text('x')
    with pytest.raises(ConfigError, match='Invalid disk base dir'):
        parse_settings({'diskBase': str(f)})
    assert parse_settings({'diskBase': str(tmp_path)}).disk_base == str(tmp_path)


def test_camel_case_aliases_and_merge():
    prev = parse_settings({'host': 'cam', 'threshold': 50})
    cfg = parse_settings({'dropboxApi': 'tok', 'dropboxBase': 'snaps', 'diskForce': 'true', 'pass': 'pw'}, prev)
    assert cfg.host == 'cam' and cfg.threshold == 50
    assert cfg.dropbox_token == 'tok'
    assert cfg.dropbox_base == '/snaps'
    assert cfg.disk_force is True
    assert cfg.password == 'pw'


def test_invalid_values_leave_previous_untouched():
    prev = parse_settings({'host': 'cam', 'threshold': 50})
    with pytest.raises(ConfigError):
        parse_settings({'threshold': 'many', 'host': 'other'}, prev)
    with pytest.raises(ConfigError):
        parse_settings({'timezone': 'Mars/Olympus'}, prev)
    with pytest.raises(ConfigError):
        parse_settings(['not', 'a', 'mapping'], prev)
    assert prev.host == 'cam' and prev.threshold == 50


def test_config_is_immutable():
    cfg = SentinelConfig()
    with pytest.raises(Exception):
        cfg.threshold = 1  # type: ignore[misc]


def test_yaml_round_trip(tmp_path):
    path = tmp_path / 'config.yaml'
    cfg = parse_settings({'host': 'cam', 'interval': '250ms', 'threshold': 77, 'timezone': 'Australia/Sydney'})
    save_config(cfg, str(path))
    assert 'interval: 250ms' in path.read_text()
    assert load_config(str(path)) == cfg
    assert to_settings(cfg)['interval'] == '250ms'


def test_missing_and_broken_config_files(tmp_path):
    assert load_config(str(tmp_path / 'nope.yaml')) == SentinelConfig()
    bad = tmp_path / 'bad.yaml'
    bad.write_text('host: [unclosed')
    with pytest.raises(ConfigError):
        load_config(str(bad))
