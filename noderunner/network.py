import logging
import os
import time
from os.path import abspath, join

from tabulate import tabulate

from .errors import StartFailed, StopFailed
from .process import ROW_HEADERS
from .services import Node
from .utils import check_file

log = logging.getLogger(__name__)


# Seq is a wrapper type around int for supplying numerical parameters
# that should differ for each node (ports etc.)
class Seq(int):
    pass


class Network:
    """A group of dev nodes sharing a workspace directory. Each node gets its own
    subdirectory as base path, logs and pid files are kept in the workspace.
    Nodes are created with `new()` and configured with `set_flags()`."""

    def __init__(self, workdir):
        os.makedirs(workdir, exist_ok=True)
        self.path = abspath(workdir)
        self.nodes = []

    def __getitem__(self, i):
        return self.nodes[i]

    def __iter__(self):
        return iter(self.nodes)

    def __len__(self):
        return len(self.nodes)

    def new(self, binary, names, policy=None):
        """Create one node per name. Does not start anything."""
        binary = check_file(binary)
        self.nodes = [Node(name, binary, join(self.path, name.lower()), self.path, policy=policy) for name in names]
        return self

    def _select(self, nodes):
        idx = range(len(self.nodes)) if nodes is None else nodes
        return [self.nodes[i] for i in idx]

    def set_flags(self, *args, nodes=None, **kwargs):
        """Set common flags for the selected nodes (all nodes if None).
        Positional arguments are used as binary flags and should be strings.
        Keyword arguments are translated to valued flags: `my_arg=some_val` results in
        `--my-arg some_val` in the binary call.
        Seq (type alias for int) can be used to specify numerical values that should be different
        for each node. `val=Seq(13)` results in `--val 13` for node0, `--val 14` for node1 and so
        on.
        Providing a list of values results in each node being assigned a corresponding value from the list."""
        selected = self._select(nodes)
        for k in args:
            for n in selected:
                n.flags[k] = True
        for k, v in kwargs.items():
            for i, n in enumerate(selected):
                if isinstance(v, Seq):
                    n.flags[k] = v + i
                elif isinstance(v, list):
                    if i < len(v):
                        n.flags[k] = v[i]
                else:
                    n.flags[k] = v

    def start(self, nodes=None):
        """Start the selected nodes (all if None). Returns the names of nodes that failed to start."""
        failed = []
        for n in self._select(nodes):
            try:
                n.start()
            except StartFailed:
                failed.append(n.name)
        return failed

    def stop(self, nodes=None, timeout=None):
        """Stop the selected nodes (all if None). Returns the names of nodes that could not be stopped."""
        failed = []
        for n in self._select(nodes):
            try:
                n.stop(timeout)
            except StopFailed as e:
                log.error(str(e))
                failed.append(n.name)
        return failed

    def status(self, nodes=None, show=True):
        """Collect a status row per node: name, pid, RPC port, peers, syncing flag, best block.
        Prints a table unless `show` is False. Returns the rows."""
        rows = []
        for n in self._select(nodes):
            st = n.status()
            health = n.node_health() if st.running else None
            if health is None:
                rows.append([n.name, st.pid or '-', n.rpc_port(), '-', '-', '-',
                             'running, RPC not responding' if st.running else 'stopped'])
            else:
                rows.append([n.name, st.pid, n.rpc_port(), health['peers'], health['syncing'], health['block'], 'healthy'])
        if show:
            print(tabulate(rows, headers=['NODE', 'PID', 'RPC', 'PEERS', 'SYNCING', 'BLOCK', 'STATE'], tablefmt='github'))
            healthy = sum(1 for r in rows if r[-1] == 'healthy')
            running = sum(1 for r in rows if r[-1] != 'stopped')
            print(f'Summary: {healthy}/{running} nodes healthy')
        return rows

    def resources(self, nodes=None):
        """Print `ps`-like resource usage of the running nodes."""
        rows = [st.resources.as_row() for st in (n.status() for n in self._select(nodes)) if st.resources]
        print(tabulate(rows, headers=ROW_HEADERS, tablefmt='github'))
        return rows

    def wait_until_healthy(self, nodes=None, timeout=30, interval=1):
        """Wait for the selected nodes (all if None) to answer `system_health`.
        If not successful within the given `timeout` (in seconds), raise TimeoutError."""
        selected = self._select(nodes)
        deadline = time.time() + timeout
        while not all(n.health().is_healthy for n in selected):
            time.sleep(interval)
            if time.time() > deadline:
                raise TimeoutError(f'Nodes not healthy after {timeout} seconds')

    def get_highest_imported(self, nodes=None):
        """Return the maximum height such that each of the selected nodes (all nodes if None)
        imported a block of such height, judging by their logs."""
        return min([n.highest_block()[0] for n in self._select(nodes)], default=-1)

    def get_highest_finalized(self, nodes=None):
        """Return the maximum height such that each of the selected nodes (all nodes if None)
        finalized a block of such height, judging by their logs."""
        return min([n.highest_block()[1] for n in self._select(nodes)], default=-1)
