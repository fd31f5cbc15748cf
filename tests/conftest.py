import pytest

from noderunner import ProcessSupervisor

from .helpers import SLEEPER, python_spec


@pytest.fixture
def make_supervisor(tmp_path):
    """Factory for supervisors with fast timings. Everything they started is killed at teardown."""
    created = []

    def factory(code=SLEEPER, name='child', **kwargs):
        kwargs.setdefault('start_grace', 0.3)
        kwargs.setdefault('poll_interval', 0.1)
        kwargs.setdefault('restart_pause', 0)
        kwargs.setdefault('stop_timeout', 2)
        sup = ProcessSupervisor(name, python_spec(tmp_path, code), str(tmp_path / f'{name}.pid'), **kwargs)
        created.append(sup)
        return sup

    yield factory

    for sup in created:
        if sup.is_running():
            sup.stop(timeout=0)
