import logging
import os
import os.path as op
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import psutil

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LaunchSpec:
    """Everything needed to launch one external binary. `env` holds overrides applied
    on top of the supervisor's own environment, `logfile` receives combined stdout and stderr."""
    binary: str
    args: Tuple[str, ...] = ()
    env: Dict[str, str] = field(default_factory=dict)
    logfile: str = os.devnull
    cwd: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'args', tuple(str(a) for a in self.args))
        object.__setattr__(self, 'env', {k: str(v) for k, v in self.env.items()})

    def command(self) -> List[str]:
        return [self.binary, *self.args]

    def environment(self) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(self.env)
        return env


class PidFile:
    """Liveness marker: a file holding the pid of the supervised process as text.
    Only one supervisor is expected to own a given file at a time, there is no locking."""

    def __init__(self, path):
        self.path = op.abspath(op.expanduser(path))

    def __repr__(self):
        return f'PidFile({self.path!r})'

    def exists(self):
        return op.isfile(self.path)

    def read(self):
        """Return the recorded pid or None if the file is missing or unreadable."""
        try:
            with open(self.path, encoding='utf-8') as f:
                content = f.read().strip()
        except OSError:
            return None
        try:
            pid = int(content)
        except ValueError:
            log.warning(f'Ignoring malformed pid file {self.path}: {content!r}')
            return None
        return pid if pid > 0 else None

    def write(self, pid):
        os.makedirs(op.dirname(self.path), exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            f.write(f'{pid}\n')

    def remove(self):
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            log.warning(f'Could not remove pid file {self.path}: {e}')


def pid_alive(pid):
    """Check if `pid` names a live process. Zombies count as dead, any psutil error reads as not running."""
    if not pid:
        return False
    try:
        proc = psutil.Process(pid)
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except psutil.Error:
        return False


@dataclass
class ManagedProcess:
    """One launched instance of a binary. `already_running` is set when `start`
    found a live instance and left it alone."""
    name: str
    pid: int
    launch_spec: LaunchSpec
    already_running: bool = False
    started_at: float = field(default_factory=time.time)


@dataclass
class ResourceSnapshot:
    """Counterpart of `ps -o pid,ppid,user,%cpu,%mem,vsz,rss,etime,command`."""
    pid: int
    ppid: int
    user: str
    cpu_percent: float
    memory_percent: float
    vms: int
    rss: int
    elapsed: float
    threads: int
    command: str

    def as_row(self):
        return [self.pid, self.ppid, self.user, f'{self.cpu_percent:.1f}', f'{self.memory_percent:.1f}',
                self.vms // 1024, self.rss // 1024, format_elapsed(self.elapsed), self.command]


ROW_HEADERS = ['PID', 'PPID', 'USER', '%CPU', '%MEM', 'VSZ', 'RSS', 'ELAPSED', 'COMMAND']


@dataclass
class ProcessStatus:
    running: bool
    pid: Optional[int] = None
    resources: Optional[ResourceSnapshot] = None


def format_elapsed(seconds):
    """Format seconds the way `ps` prints etime: [[dd-]hh:]mm:ss."""
    seconds = int(max(seconds, 0))
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    res = f'{minutes:02d}:{secs:02d}'
    if hours or days:
        res = f'{hours:02d}:' + res
    if days:
        res = f'{days}-' + res
    return res


def snapshot(pid):
    """Collect resource usage of a live process. Returns None if the process is gone or inaccessible."""
    try:
        proc = psutil.Process(pid)
        with proc.oneshot():
            elapsed = time.time() - proc.create_time()
            times = proc.cpu_times()
            cpu = 100.0 * (times.user + times.system) / elapsed if elapsed > 0 else 0.0
            mem = proc.memory_info()
            return ResourceSnapshot(
                pid=pid,
                ppid=proc.ppid(),
                user=proc.username(),
                cpu_percent=cpu,
                memory_percent=proc.memory_percent(),
                vms=mem.vms,
                rss=mem.rss,
                elapsed=elapsed,
                threads=proc.num_threads(),
                command=' '.join(proc.cmdline()) or proc.name(),
            )
    except psutil.Error as e:
        log.debug(f'Cannot collect resources of process {pid}: {e}')
        return None
