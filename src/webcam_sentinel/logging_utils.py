from typing import Optional

LEVELS = ['debug', 'info', 'warn', 'error']

_level = 'info'


def set_level(level: str) -> None:
    global _level
    if level == 'warning':
        level = 'warn'
    if level not in LEVELS:
        raise ValueError(f'unknown log level: {level}')
    _level = level


def log(msg: str, level: str = 'info', *, cfg_level: Optional[str] = None) -> None:
    threshold = cfg_level or _level
    if LEVELS.index(level) >= LEVELS.index(threshold):
        print(f'[{level.upper()}] {msg}', flush=True)
