"""Configuration from environment variables.

Every service reads its settings from variables sharing a prefix, e.g. MPS_PORT or
MPS_MAX_RESTART_ATTEMPTS for the proof server. Unset variables fall back to defaults.
"""
import os
import os.path as op
from dataclasses import dataclass

from .supervisor import RestartPolicy
from .utils import as_bool


class Env:
    """Typed access to environment variables sharing a common prefix."""

    def __init__(self, prefix='', environ=None):
        self.prefix = prefix
        self.environ = os.environ if environ is None else environ

    def key(self, name):
        return self.prefix + name

    def get(self, name, default=None):
        return self.environ.get(self.key(name), default)

    def _convert(self, name, default, conv):
        raw = self.environ.get(self.key(name))
        if raw is None or raw.strip() == '':
            return default
        try:
            return conv(raw.strip())
        except ValueError as e:
            raise ValueError(f'invalid value for {self.key(name)}: {raw!r}') from e

    def get_int(self, name, default=None):
        return self._convert(name, default, int)

    def get_float(self, name, default=None):
        return self._convert(name, default, float)

    def get_bool(self, name, default=False):
        raw = self.environ.get(self.key(name))
        return default if raw is None else as_bool(raw)


@dataclass
class SupervisorConfig:
    """Settings common to all supervised services."""
    name: str
    binary: str
    pidfile: str
    logfile: str
    stop_timeout: float
    start_grace: float
    policy: RestartPolicy

    @classmethod
    def from_env(cls, env, name, binary=None, stop_timeout=30, start_grace=2):
        """Read <prefix>BINARY_PATH, PID_FILE, LOG_FILE, STOP_TIMEOUT, START_GRACE,
        HEALTH_CHECK_INTERVAL, MAX_RESTART_ATTEMPTS and RESTART_DELAY."""
        binary_name = env.get('BINARY_NAME', name)
        return cls(
            name=binary_name,
            binary=op.expanduser(env.get('BINARY_PATH') or binary or binary_name),
            pidfile=env.get('PID_FILE', op.join('/tmp', f'{binary_name}.pid')),
            logfile=env.get('LOG_FILE', op.join('/tmp', f'{binary_name}.log')),
            stop_timeout=env.get_float('STOP_TIMEOUT', stop_timeout),
            start_grace=env.get_float('START_GRACE', start_grace),
            policy=RestartPolicy(
                max_attempts=env.get_int('MAX_RESTART_ATTEMPTS', 3),
                restart_delay=env.get_float('RESTART_DELAY', 5),
                health_check_interval=env.get_float('HEALTH_CHECK_INTERVAL', 30),
                health_failure_threshold=env.get_int('HEALTH_FAILURE_THRESHOLD', 3),
            ),
        )
