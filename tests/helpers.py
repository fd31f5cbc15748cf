import sys
import time

import psutil

from noderunner import LaunchSpec
from noderunner.utils import tail

SLEEPER = 'import time; time.sleep(60)'
CRASHER = 'import sys; print("boom: cannot load shared library", flush=True); sys.exit(3)'
STUBBORN = ('import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); '
            'print("ready", flush=True); time.sleep(60)')


def python_spec(tmp_path, code, **env):
    """LaunchSpec running a Python one-liner, logging to tmp_path/child.log."""
    return LaunchSpec(sys.executable, ['-c', code], env, str(tmp_path / 'child.log'))


def wait_for_log(path, text, timeout=5):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if any(text in line for line in tail(path, 100)):
            return True
        time.sleep(0.05)
    return False


def live_children():
    """Pids of this process' children that are alive and not zombies."""
    res = []
    for child in psutil.Process().children():
        try:
            if child.status() != psutil.STATUS_ZOMBIE:
                res.append(child.pid)
        except psutil.Error:
            pass
    return res
