import logging
import os
import os.path as op
import signal
import subprocess
import time
from dataclasses import dataclass

import psutil

from .errors import MonitorExhausted, StartFailed, StopFailed
from .process import ManagedProcess, PidFile, ProcessStatus, pid_alive, snapshot
from .utils import tail

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RestartPolicy:
    """Settings of the monitor loop.
    `max_attempts` bounds consecutive restarts of a process that keeps dying on its own,
    `health_failure_threshold` is the number of consecutive failed probes of a live
    process that triggers a restart. The two are counted separately."""
    max_attempts: int = 3
    restart_delay: float = 5
    health_check_interval: float = 30
    health_failure_threshold: int = 3

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f'max_attempts must be at least 1, got {self.max_attempts}')
        if self.health_failure_threshold < 1:
            raise ValueError(f'health_failure_threshold must be at least 1, got {self.health_failure_threshold}')
        if self.restart_delay < 0 or self.health_check_interval < 0:
            raise ValueError('restart_delay and health_check_interval cannot be negative')


class ProcessSupervisor:
    """Lifecycle of a single external process: start, stop, status and a monitor loop
    that restarts it when it dies or stops passing health checks.
    `launch_spec` is a LaunchSpec describing the binary. The pid of the running process is
    kept in `pidfile` (default /tmp/<name>.pid), so a fresh supervisor finds a process
    launched by an earlier one.
    `precondition`, if given, is called before every launch (including the ones made by
    `restart` and `monitor`) and vetoes it by raising StartFailed."""

    def __init__(self, name, launch_spec, pidfile=None, stop_timeout=30, start_grace=2,
                 poll_interval=1, restart_pause=2, log_tail_lines=20, precondition=None):
        self.name = name
        self.launch_spec = launch_spec
        self.precondition = precondition
        self.pidfile = PidFile(pidfile or op.join('/tmp', f'{name}.pid'))
        self.stop_timeout = stop_timeout
        self.start_grace = start_grace
        self.poll_interval = poll_interval
        self.restart_pause = restart_pause
        self.log_tail_lines = log_tail_lines
        self._process = None

    def __repr__(self):
        return f'ProcessSupervisor({self.name!r}, pidfile={self.pidfile.path!r})'

    def _alive(self, pid):
        # Our own children must be polled, otherwise they linger as zombies.
        if self._process is not None and self._process.pid == pid:
            return self._process.poll() is None
        return pid_alive(pid)

    def _signal(self, pid, sig):
        try:
            psutil.Process(pid).send_signal(sig)
        except psutil.NoSuchProcess:
            log.debug(f'{self.name}: process {pid} already gone before {sig.name}')
        except psutil.Error as e:
            log.warning(f'{self.name}: failed to send {sig.name} to {pid}: {e}')

    def _wait_exit(self, pid, timeout):
        """Poll liveness every `poll_interval` seconds, at most `timeout` seconds. Return True if the process exited."""
        deadline = time.monotonic() + timeout
        while self._alive(pid):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(self.poll_interval, remaining))
        return True

    def _start_failed(self, reason):
        lines = tail(self.launch_spec.logfile, self.log_tail_lines)
        log.error(f'{self.name} failed to start: {reason}')
        if lines:
            log.error(f'Last lines of {self.launch_spec.logfile}:')
            for line in lines:
                log.error(f'  | {line}')
        return StartFailed(reason, lines)

    def pid(self):
        """Return the pid of the running process or None. A pid file naming a dead
        process is stale and gets removed."""
        pid = self.pidfile.read()
        if pid is None:
            if self.pidfile.exists():
                self.pidfile.remove()
            return None
        if self._alive(pid):
            return pid
        log.warning(f'{self.name}: pid file exists but process {pid} is not running')
        self.pidfile.remove()
        return None

    def is_running(self):
        """Check the pid file against the process table."""
        return self.pid() is not None

    def start(self, launch_spec=None):
        """Launch the process unless it is already running. Returns a ManagedProcess,
        with `already_running` set if an existing instance was kept.
        Raise StartFailed if the binary cannot be launched or dies within `start_grace` seconds.
        A given `launch_spec` replaces the current one for this and later starts."""
        if launch_spec is not None:
            self.launch_spec = launch_spec
        spec = self.launch_spec

        pid = self.pid()
        if pid is not None:
            log.warning(f'{self.name} is already running (PID: {pid})')
            return ManagedProcess(self.name, pid, spec, already_running=True)

        if self.precondition is not None:
            self.precondition()

        log.info(f'Launching {self.name}: {" ".join(spec.command())}')
        try:
            logdir = op.dirname(op.abspath(spec.logfile))
            os.makedirs(logdir, exist_ok=True)
            with open(spec.logfile, 'ab') as logfile:
                self._process = subprocess.Popen(spec.command(), stdin=subprocess.DEVNULL, stdout=logfile,
                                                 stderr=subprocess.STDOUT, env=spec.environment(), cwd=spec.cwd,
                                                 start_new_session=True)
        except (OSError, ValueError) as e:
            self._process = None
            raise self._start_failed(f'cannot launch {spec.binary}: {e}') from e

        pid = self._process.pid
        try:
            self.pidfile.write(pid)
        except OSError as e:
            self._signal(pid, signal.SIGKILL)
            self._wait_exit(pid, self.poll_interval)
            raise self._start_failed(f'cannot record pid in {self.pidfile.path}: {e}') from e

        time.sleep(self.start_grace)
        if not self._alive(pid):
            self.pidfile.remove()
            code = self._process.returncode
            raise self._start_failed(f'process {pid} exited within {self.start_grace}s (exit code {code})')

        log.info(f'{self.name} started successfully (PID: {pid})')
        log.info(f'Logs: tail -f {spec.logfile}')
        return ManagedProcess(self.name, pid, spec)

    def stop(self, timeout=None):
        """Stop the process: SIGTERM, wait up to `timeout` seconds (default `stop_timeout`),
        then SIGKILL. Stopping a process that is not running is a no-op.
        Raise StopFailed if the process survives SIGKILL."""
        timeout = self.stop_timeout if timeout is None else timeout
        pid = self.pid()
        if pid is None:
            log.info(f'{self.name} is not running')
            self.pidfile.remove()
            return

        log.info(f'Stopping {self.name} (PID: {pid})')
        self._signal(pid, signal.SIGTERM)
        if not self._wait_exit(pid, timeout):
            log.warning(f'Graceful shutdown of {self.name} failed after {timeout}s, forcing kill')
            self._signal(pid, signal.SIGKILL)
            if not self._wait_exit(pid, max(self.poll_interval, 5)):
                raise StopFailed(f'{self.name} (PID: {pid}) is still running after SIGKILL')

        self.pidfile.remove()
        self._process = None
        log.info(f'{self.name} stopped successfully')

    def restart(self):
        self.stop()
        time.sleep(self.restart_pause)
        return self.start()

    def status(self):
        """Return a ProcessStatus with a resource snapshot of the running process."""
        pid = self.pid()
        if pid is None:
            return ProcessStatus(False)
        return ProcessStatus(True, pid, snapshot(pid))

    def monitor(self, health_probe=None, policy=None):
        """Keep the process alive until interrupted.
        Every `health_check_interval` seconds: if the process is gone, restart it after
        `restart_delay`; give up with MonitorExhausted once `max_attempts` restarts in a row
        have not brought it back. If it is alive, call `health_probe` (if given) and restart
        the process after `health_failure_threshold` consecutive failed probes.
        KeyboardInterrupt ends the loop and leaves the process running."""
        policy = policy or RestartPolicy()
        log.info(f'Monitoring {self.name}, health check interval: {policy.health_check_interval}s')
        attempts = 0
        health_failures = 0
        try:
            while True:
                if not self.is_running():
                    log.error(f'{self.name} is not running!')
                    if attempts >= policy.max_attempts:
                        log.error(f'Maximum restart attempts reached ({policy.max_attempts})')
                        raise MonitorExhausted(attempts)
                    attempts += 1
                    log.warning(f'Attempting to restart {self.name} (attempt {attempts}/{policy.max_attempts})')
                    time.sleep(policy.restart_delay)
                    try:
                        self.start()
                    except StartFailed:
                        continue
                    attempts = 0
                    health_failures = 0
                elif health_probe is not None:
                    result = health_probe()
                    if result.is_healthy:
                        log.info(f'{self.name} is healthy (PID: {self.pidfile.read()})')
                        health_failures = 0
                    else:
                        health_failures += 1
                        log.warning(f'{self.name} health check failed '
                                    f'({health_failures}/{policy.health_failure_threshold}): {result}')
                        if health_failures >= policy.health_failure_threshold:
                            log.error(f'Multiple consecutive health check failures, restarting {self.name}')
                            health_failures = 0
                            try:
                                self.restart()
                            except StartFailed:
                                continue
                            except StopFailed as e:
                                log.error(str(e))
                else:
                    log.info(f'{self.name} is running (PID: {self.pidfile.read()})')
                time.sleep(policy.health_check_interval)
        except KeyboardInterrupt:
            log.info(f'Monitoring of {self.name} interrupted, process left running')
