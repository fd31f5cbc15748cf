from unittest.mock import Mock

import jsonrpcclient
import pytest

from noderunner import HealthCheckResult, MonitorExhausted, RestartPolicy, StartFailed, dev_node, indexer, proof_server
from noderunner.health import GraphqlProbe, HttpProbe, RpcProbe
from noderunner.services import DEFAULT_INDEXER_SECRET, http_url


def test_proof_server_defaults():
    svc = proof_server({})
    spec = svc.supervisor.launch_spec
    assert spec.binary == 'midnight-proof-server'
    assert spec.args == ('--port', '6300', '--num-workers', '16')
    assert spec.env == {'RUST_BACKTRACE': '1'}
    assert spec.logfile == '/tmp/midnight-proof-server.log'
    assert svc.supervisor.pidfile.path == '/tmp/midnight-proof-server.pid'
    assert isinstance(svc.probe, HttpProbe)
    assert svc.probe.url == 'http://localhost:6300/health'
    assert svc.ready_probe.url == 'http://localhost:6300/ready'


def test_proof_server_from_environment(tmp_path):
    svc = proof_server({
        'MPS_BINARY_PATH': '/opt/bin/proof-server',
        'MPS_PORT': '7000',
        'MPS_VERBOSE': 'true',
        'MPS_JOB_CAPACITY': '4',
        'MPS_NUM_WORKERS': '2',
        'MPS_JOB_TIMEOUT': '300',
        'MPS_NO_FETCH_PARAMS': 'true',
        'MPS_PID_FILE': str(tmp_path / 'mps.pid'),
        'MPS_MAX_RESTART_ATTEMPTS': '5',
        'MPS_HEALTH_CHECK_INTERVAL': '10',
    })
    spec = svc.supervisor.launch_spec
    assert spec.binary == '/opt/bin/proof-server'
    assert spec.args == ('--port', '7000', '--verbose', '--job-capacity', '4', '--job-timeout', '300.0',
                         '--no-fetch-params')
    assert svc.supervisor.pidfile.path == str(tmp_path / 'mps.pid')
    assert svc.policy.max_attempts == 5
    assert svc.policy.health_check_interval == 10.0
    assert svc.probe.url == 'http://localhost:7000/health'


def test_proof_server_invalid_port():
    with pytest.raises(ValueError, match='MPS_PORT'):
        proof_server({'MPS_PORT': 'abc'})


def test_indexer_environment():
    svc = indexer({'APP__INFRA__NODE__URL': 'ws://10.0.0.5:9944', 'INDEXER_API_PORT': '9000',
                   'INDEXER_LOG_FILE': '/var/log/indexer.log'})
    spec = svc.supervisor.launch_spec
    assert spec.binary == 'indexer-standalone'
    assert spec.args == ()
    assert spec.env['APP__INFRA__NODE__URL'] == 'ws://10.0.0.5:9944'
    assert spec.env['APP__INFRA__SECRET'] == DEFAULT_INDEXER_SECRET
    assert spec.env['APP__INFRA__STORAGE__CNN_URL'] == '/var/log/indexer-data/indexer.sqlite'
    assert spec.env['RUST_LOG'] == 'info'
    assert svc.supervisor.start_grace == 3
    assert isinstance(svc.probe, GraphqlProbe)
    assert svc.probe.url == 'http://localhost:9000/api/v3/graphql'
    assert svc.node_probe.url == 'http://10.0.0.5:9944'


@pytest.fixture
def offline_indexer(tmp_path, monkeypatch):
    """Indexer whose node is unreachable, with process launching replaced by a mock."""
    monkeypatch.setattr('noderunner.supervisor.time.sleep', lambda s: None)
    popen = Mock()
    monkeypatch.setattr('noderunner.supervisor.subprocess.Popen', popen)
    svc = indexer({'INDEXER_PID_FILE': str(tmp_path / 'indexer.pid'), 'INDEXER_LOG_FILE': str(tmp_path / 'indexer.log')})
    svc.node_probe = Mock(return_value=HealthCheckResult.unreachable('connection refused'))
    return svc, popen


def test_indexer_refuses_to_start_without_node(offline_indexer):
    svc, popen = offline_indexer
    with pytest.raises(StartFailed, match='not accessible'):
        svc.start()
    popen.assert_not_called()
    assert not svc.supervisor.pidfile.exists()


def test_indexer_monitor_checks_node_before_relaunch(offline_indexer):
    svc, popen = offline_indexer
    svc.policy = RestartPolicy(max_attempts=2, restart_delay=0, health_check_interval=0)
    with pytest.raises(MonitorExhausted):
        svc.monitor()
    assert svc.node_probe.call_count == 2
    popen.assert_not_called()


def test_indexer_health_restart_checks_node(offline_indexer):
    svc, popen = offline_indexer
    svc.supervisor.is_running = Mock(side_effect=[True, KeyboardInterrupt()])
    svc.supervisor.stop = Mock()
    svc.probe = Mock(return_value=HealthCheckResult.unreachable('connection refused'))
    svc.policy = RestartPolicy(health_check_interval=0, health_failure_threshold=1)
    svc.monitor()
    svc.supervisor.stop.assert_called_once_with()
    svc.node_probe.assert_called_once_with()
    popen.assert_not_called()


def test_indexer_without_node_check(tmp_path):
    svc = indexer({'INDEXER_CHECK_NODE': 'false', 'INDEXER_PID_FILE': str(tmp_path / 'indexer.pid')})
    assert svc.supervisor.precondition is None


@pytest.mark.parametrize('url,expected', [
    ('ws://127.0.0.1:9944', 'http://127.0.0.1:9944'),
    ('wss://rpc.example.org', 'https://rpc.example.org'),
    ('http://localhost:9944', 'http://localhost:9944'),
])
def test_http_url(url, expected):
    assert http_url(url) == expected


def test_dev_node(tmp_path):
    node = dev_node('Bob', {'MO_BINARY': '/opt/midnight-node', 'MO_BASE_DIR': str(tmp_path / 'nodes'),
                            'MO_LOG_DIR': str(tmp_path / 'logs'), 'MO_PID_DIR': str(tmp_path / 'pids')})
    spec = node.launch_spec()
    assert spec.binary == '/opt/midnight-node'
    assert spec.args == ('--base-path', str(tmp_path / 'nodes' / 'bob'), '--name', 'Bob', '--dev')
    assert spec.env == {'CFG_PRESET': 'dev'}
    assert spec.logfile == str(tmp_path / 'logs' / 'Bob.log')
    assert node.supervisor.pidfile.path == str(tmp_path / 'pids' / 'Bob.pid')
    assert node.supervisor.stop_timeout == 15
    assert isinstance(node.probe, RpcProbe)
    assert node.rpc_url() == 'http://localhost:9944'


def test_node_flags_are_applied_on_start(tmp_path):
    node = dev_node('Alice', {'MO_BASE_DIR': str(tmp_path), 'MO_LOG_DIR': str(tmp_path), 'MO_PID_DIR': str(tmp_path)})
    node.flags['rpc_port'] = 9950
    node.supervisor.start = Mock()
    node.start()
    assert '--rpc-port' in node.supervisor.launch_spec.args
    assert node.probe.url == 'http://localhost:9950'


def test_node_health(tmp_path):
    node = dev_node('Alice', {'MO_BASE_DIR': str(tmp_path), 'MO_LOG_DIR': str(tmp_path), 'MO_PID_DIR': str(tmp_path)})
    node.rpc = Mock(side_effect=[jsonrpcclient.Ok({'peers': 3, 'isSyncing': True}, 1),
                                 jsonrpcclient.Ok({'number': '0x1a'}, 2)])
    assert node.node_health() == {'peers': 3, 'syncing': True, 'block': 26}

    node.rpc = Mock(return_value=None)
    assert node.node_health() is None


def test_node_rpc_when_stopped(tmp_path):
    node = dev_node('Alice', {'MO_BASE_DIR': str(tmp_path), 'MO_LOG_DIR': str(tmp_path), 'MO_PID_DIR': str(tmp_path)})
    assert node.rpc('system_health') is None


def test_node_highest_block_and_logs(tmp_path):
    node = dev_node('Alice', {'MO_BASE_DIR': str(tmp_path), 'MO_LOG_DIR': str(tmp_path), 'MO_PID_DIR': str(tmp_path)})
    assert node.highest_block() == (-1, -1)
    (tmp_path / 'Alice.log').write_text(
        'Idle (0 peers), best: #5 (0xab), finalized #3 (0xcd)\n'
        'Idle (1 peers), best: #8 (0xef), finalized #6 (0x01)\n')
    assert node.highest_block() == (8, 6)
    assert len(node.logs(1)) == 1
    assert 'best: #8' in node.logs(1)[0]


def test_dev_node_explicit_files(tmp_path):
    node = dev_node('Alice', {'MO_BASE_DIR': str(tmp_path), 'MO_LOG_DIR': str(tmp_path / 'logs'),
                              'MO_LOG_FILE': str(tmp_path / 'alice-dev.log'), 'MO_PID_FILE': str(tmp_path / 'alice.pid')})
    assert node.launch_spec().logfile == str(tmp_path / 'alice-dev.log')
    assert node.supervisor.pidfile.path == str(tmp_path / 'alice.pid')
    node.supervisor.start = Mock()
    node.start()
    assert node.logfile == str(tmp_path / 'alice-dev.log')


def test_follow_logs(tmp_path):
    node = dev_node('Alice', {'MO_BASE_DIR': str(tmp_path), 'MO_LOG_DIR': str(tmp_path), 'MO_PID_DIR': str(tmp_path)})
    (tmp_path / 'Alice.log').write_text('booting\nbest: #1 (0xab), finalized #0 (0xcd)\n')
    lines = node.follow_logs(1)
    assert next(lines) == 'best: #1 (0xab), finalized #0 (0xcd)'
    lines.close()
