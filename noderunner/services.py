"""Presets for the binaries noderunner is used with: the proof server, the indexer and dev nodes.

Each preset wraps a ProcessSupervisor together with the health probe that suits the
service and the restart policy read from the environment.
"""
import logging
import os.path as op

import jsonrpcclient
import requests

from .config import Env, SupervisorConfig
from .errors import StartFailed
from .health import GraphqlProbe, HttpProbe, RpcProbe, rpc_call
from .process import LaunchSpec
from .supervisor import ProcessSupervisor, RestartPolicy
from .utils import flags_from_dict, follow, greplog, tail

log = logging.getLogger(__name__)

DEFAULT_INDEXER_SECRET = '303132333435363738393031323334353637383930313233343536373839303132'


class Service:
    """A supervised binary together with the probe used to judge its health."""

    def __init__(self, supervisor, probe=None, policy=None):
        self.supervisor = supervisor
        self.probe = probe
        self.policy = policy or RestartPolicy()

    def __repr__(self):
        return f'{type(self).__name__}({self.name!r})'

    @property
    def name(self):
        return self.supervisor.name

    @property
    def logfile(self):
        return self.supervisor.launch_spec.logfile

    def start(self):
        return self.supervisor.start()

    def stop(self, timeout=None):
        self.supervisor.stop(timeout)

    def restart(self):
        return self.supervisor.restart()

    def is_running(self):
        return self.supervisor.is_running()

    def status(self):
        return self.supervisor.status()

    def health(self):
        """Run the health probe once. Returns None if the service has no probe."""
        return self.probe() if self.probe is not None else None

    def monitor(self):
        self.supervisor.monitor(self.probe, self.policy)

    def logs(self, lines=20):
        return tail(self.logfile, lines)

    def follow_logs(self, lines=20):
        """Yield the last `lines` log lines, then new ones as they are written (`tail -f`)."""
        return follow(self.logfile, lines)

    def greplog(self, regexp):
        """Find in the logs all occurrences of the given regexp. Returns a list of matches."""
        return greplog(self.logfile, regexp)


def _supervisor(cfg, args=(), env=None, cwd=None):
    spec = LaunchSpec(cfg.binary, args, env or {}, cfg.logfile, cwd)
    return ProcessSupervisor(cfg.name, spec, cfg.pidfile, stop_timeout=cfg.stop_timeout, start_grace=cfg.start_grace)


class ProofServer(Service):
    """midnight-proof-server. Healthy when GET /health answers 200, /ready answers 503 while busy."""

    def __init__(self, supervisor, port=6300, host='localhost', policy=None):
        self.base_url = f'http://{host}:{port}'
        super().__init__(supervisor, HttpProbe(self.base_url + '/health'), policy)
        self.ready_probe = HttpProbe(self.base_url + '/ready')

    def ready(self):
        return self.ready_probe()

    def version(self):
        """Return the version string reported by the server, None if it cannot be fetched."""
        try:
            resp = requests.get(self.base_url + '/version', timeout=2)
            resp.raise_for_status()
        except requests.RequestException as e:
            log.error(f'Cannot fetch version from {self.base_url}/version: {e}')
            return None
        return resp.text.strip()


def proof_server(environ=None):
    """Build the proof server preset from MPS_* variables."""
    env = Env('MPS_', environ)
    cfg = SupervisorConfig.from_env(env, 'midnight-proof-server')
    port = env.get_int('PORT', 6300)
    num_workers = env.get_int('NUM_WORKERS', 16)
    job_capacity = env.get_int('JOB_CAPACITY', 0)
    job_timeout = env.get_float('JOB_TIMEOUT', 600.0)
    flags = {
        'port': port,
        'verbose': env.get_bool('VERBOSE'),
        'job_capacity': job_capacity or None,
        'num_workers': num_workers if num_workers != 2 else None,
        'job_timeout': job_timeout if job_timeout != 600.0 else None,
        'no_fetch_params': env.get_bool('NO_FETCH_PARAMS'),
    }
    run_env = {'RUST_BACKTRACE': env.get('RUST_BACKTRACE', '1')}
    supervisor = _supervisor(cfg, flags_from_dict(flags), run_env)
    return ProofServer(supervisor, port, policy=cfg.policy)


def http_url(url):
    """Turn a ws:// node endpoint into the matching http:// one."""
    if url.startswith('wss://'):
        return 'https://' + url[len('wss://'):]
    if url.startswith('ws://'):
        return 'http://' + url[len('ws://'):]
    return url


class Indexer(Service):
    """indexer-standalone. Healthy when its GraphQL API returns data. Refuses to start
    while the node it indexes does not answer `system_health`."""

    def __init__(self, supervisor, api_port=8088, node_url='ws://127.0.0.1:9944', policy=None, check_node=True):
        self.api_url = f'http://localhost:{api_port}/api/v3/graphql'
        super().__init__(supervisor, GraphqlProbe(self.api_url), policy)
        self.node_url = node_url
        self.node_probe = RpcProbe(http_url(node_url))
        if check_node:
            # every launch goes through it, restarts done by the monitor loop too
            supervisor.precondition = self.check_node

    def check_node(self):
        """Raise StartFailed unless the node answers `system_health`."""
        result = self.node_probe()
        if not result.is_healthy:
            log.error(f'Cannot start indexer: node at {self.node_url} is not accessible ({result})')
            raise StartFailed(f'node at {self.node_url} is not accessible: {result}')


def indexer(environ=None):
    """Build the indexer preset from INDEXER_* variables plus the APP__INFRA__* ones the binary reads itself."""
    env = Env('INDEXER_', environ)
    raw = Env('', environ)
    cfg = SupervisorConfig.from_env(env, 'indexer-standalone', start_grace=3)
    node_url = raw.get('APP__INFRA__NODE__URL', 'ws://127.0.0.1:9944')
    data_dir = env.get('DATA_DIR', op.join(op.dirname(cfg.logfile), 'indexer-data'))
    run_env = {
        'RUST_LOG': env.get('RUST_LOG', 'info'),
        'RUST_BACKTRACE': env.get('RUST_BACKTRACE', '1'),
        'APP__INFRA__NODE__URL': node_url,
        'APP__INFRA__STORAGE__CNN_URL': raw.get('APP__INFRA__STORAGE__CNN_URL', op.join(data_dir, 'indexer.sqlite')),
        'APP__INFRA__SECRET': raw.get('APP__INFRA__SECRET', DEFAULT_INDEXER_SECRET),
    }
    config_file = env.get('CONFIG_FILE')
    if config_file:
        run_env['CONFIG_FILE'] = config_file
    supervisor = _supervisor(cfg, env=run_env)
    return Indexer(supervisor, env.get_int('API_PORT', 8088), node_url, policy=cfg.policy,
                   check_node=env.get_bool('CHECK_NODE', True))


class Node(Service):
    """A single midnight-node in dev mode. `flags` are turned into command line arguments
    on every start, so they may be changed while the node is stopped. The node's own
    directory `path` is used as its base path, logs go to `logdir`/`name`.log and the pid
    to `piddir`/`name`.pid unless `logfile` or `pidfile` name the files directly."""

    def __init__(self, name, binary, path, logdir=None, piddir=None, policy=None, stop_timeout=15,
                 logfile=None, pidfile=None):
        self.path = path
        self.logdir = logdir or path
        self.logpath = logfile or op.join(self.logdir, name + '.log')
        self.binary = binary
        self.flags = {'dev': True}
        self.env = {'CFG_PRESET': 'dev'}
        pidfile = pidfile or op.join(piddir or self.logdir, name + '.pid')
        supervisor = ProcessSupervisor(name, LaunchSpec(binary), pidfile, stop_timeout=stop_timeout)
        super().__init__(supervisor, None, policy)
        self._refresh()

    def launch_spec(self):
        args = ['--base-path', self.path, '--name', self.name] + flags_from_dict(self.flags)
        return LaunchSpec(self.binary, args, self.env, self.logpath)

    def _refresh(self):
        # flags may have changed since the last launch
        self.supervisor.launch_spec = self.launch_spec()
        self.probe = RpcProbe(self.rpc_url())

    def start(self):
        """Start the node with the current flags."""
        self._refresh()
        return self.supervisor.start()

    def restart(self):
        self._refresh()
        return self.supervisor.restart()

    def monitor(self):
        self._refresh()
        super().monitor()

    def rpc_port(self):
        port = self.flags.get('rpc_port', self.flags.get('rpc-port'))
        return 9944 if port is None else port

    def rpc_url(self):
        return f'http://localhost:{self.rpc_port()}'

    def rpc(self, method, params=None):
        """Make an RPC call to the node with the given method and params.
        `params` should be a tuple for positional arguments, or a dict for keyword arguments.
        Returns None if the node is not running or cannot be reached."""
        if not self.is_running():
            log.warning(f'cannot RPC because {self.name} is not running')
            return None
        try:
            return rpc_call(self.rpc_url(), method, params)
        except (requests.RequestException, ValueError) as e:
            log.warning(f'{self.name}: RPC {method} failed: {e}')
            return None

    def node_health(self):
        """Return a dict with peers, syncing flag and best block number, or None if RPC is not responding."""
        health = self.rpc('system_health')
        if not isinstance(health, jsonrpcclient.Ok):
            return None
        header = self.rpc('chain_getHeader')
        block = -1
        if isinstance(header, jsonrpcclient.Ok) and header.result:
            block = int(header.result.get('number', '0x0'), 16)
        return {
            'peers': health.result.get('peers', 0),
            'syncing': health.result.get('isSyncing', False),
            'block': block,
        }

    def highest_block(self):
        """Find in the logs the height of the most recent block.
        Return two ints: highest block and highest finalized block."""
        results = self.greplog(r'best: #(\d+) .+ finalized #(\d+)')
        if results:
            a, b = results[-1]
            return int(a), int(b)
        return -1, -1


def dev_node(name='Alice', environ=None):
    """Build a dev node from MO_* variables: MO_BINARY, MO_BASE_DIR, MO_LOG_DIR and MO_PID_DIR.
    MO_LOG_FILE and MO_PID_FILE, when set, name the files directly and win over the directories."""
    env = Env('MO_', environ)
    cfg = SupervisorConfig.from_env(env, 'midnight-node', binary=env.get('BINARY', './target/release/midnight-node'),
                                    stop_timeout=15)
    base_dir = env.get('BASE_DIR', '/tmp/midnight-nodes')
    node = Node(name, cfg.binary, op.join(base_dir, name.lower()), env.get('LOG_DIR', '/tmp/midnight-logs'),
                env.get('PID_DIR', '/tmp/midnight-pids'), policy=cfg.policy, stop_timeout=cfg.stop_timeout,
                logfile=env.get('LOG_FILE'), pidfile=env.get('PID_FILE'))
    node.supervisor.start_grace = cfg.start_grace
    return node
