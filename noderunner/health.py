"""Health probes for supervised services.

A probe is any callable taking no arguments and returning a `HealthCheckResult`.
The classes below cover the endpoints the managed binaries expose: plain HTTP
health routes, substrate-style JSON-RPC and the indexer's GraphQL API.
"""
import enum
import logging
import time
from dataclasses import dataclass

import jsonrpcclient
import requests

log = logging.getLogger(__name__)


class HealthState(enum.Enum):
    HEALTHY = 'healthy'
    UNHEALTHY = 'unhealthy'
    UNREACHABLE = 'unreachable'


@dataclass(frozen=True)
class HealthCheckResult:
    state: HealthState
    reason: str = ''
    busy: bool = False

    @classmethod
    def healthy(cls, reason=''):
        return cls(HealthState.HEALTHY, reason)

    @classmethod
    def unhealthy(cls, reason, busy=False):
        return cls(HealthState.UNHEALTHY, reason, busy)

    @classmethod
    def unreachable(cls, reason):
        return cls(HealthState.UNREACHABLE, reason)

    @property
    def is_healthy(self):
        return self.state is HealthState.HEALTHY

    def __str__(self):
        res = self.state.value
        if self.busy:
            res += ' (busy)'
        if self.reason:
            res += f': {self.reason}'
        return res


class HttpProbe:
    """GET `url`. HTTP 200 is healthy, 503 is unhealthy but busy (the proof server's
    answer when its job queue is full), anything else is unhealthy. Connection
    problems and timeouts are reported as unreachable."""

    def __init__(self, url, timeout=2.0):
        self.url = url
        self.timeout = timeout

    def __repr__(self):
        return f'HttpProbe({self.url!r})'

    def __call__(self):
        try:
            resp = requests.get(self.url, timeout=self.timeout)
        except requests.RequestException as e:
            return HealthCheckResult.unreachable(f'cannot connect to {self.url}: {e}')
        body = resp.text.strip()[:200]
        if resp.status_code == 200:
            return HealthCheckResult.healthy(body)
        if resp.status_code == 503:
            return HealthCheckResult.unhealthy(f'HTTP 503 {body}'.strip(), busy=True)
        return HealthCheckResult.unhealthy(f'HTTP {resp.status_code} {body}'.strip())


def rpc_call(url, method, params=None, timeout=2.0):
    """Make a JSON-RPC call and return the parsed `jsonrpcclient` response (Ok or Error).
    `params` should be a tuple for positional arguments, or a dict for keyword arguments.
    Raises requests.RequestException on transport errors and ValueError on malformed responses."""
    resp = requests.post(url, json=jsonrpcclient.request(method, params), timeout=timeout)
    try:
        return jsonrpcclient.parse(resp.json())
    except (KeyError, TypeError) as e:
        raise ValueError(f'malformed JSON-RPC response from {url}: {resp.text[:200]}') from e


class RpcProbe:
    """Call a JSON-RPC method (`system_health` by default) and treat any `result` as healthy."""

    def __init__(self, url, method='system_health', params=None, timeout=2.0):
        self.url = url
        self.method = method
        self.params = params
        self.timeout = timeout

    def __repr__(self):
        return f'RpcProbe({self.url!r}, {self.method!r})'

    def __call__(self):
        try:
            resp = rpc_call(self.url, self.method, self.params, self.timeout)
        except requests.RequestException as e:
            return HealthCheckResult.unreachable(f'cannot connect to {self.url}: {e}')
        except ValueError as e:
            return HealthCheckResult.unhealthy(str(e))
        if isinstance(resp, jsonrpcclient.Ok):
            return HealthCheckResult.healthy(str(resp.result))
        return HealthCheckResult.unhealthy(f'RPC error {resp.code}: {resp.message}')


class GraphqlProbe:
    """POST a GraphQL query and treat a response with a non-null `data` member as healthy."""

    def __init__(self, url, query='{ block { height } }', timeout=2.0):
        self.url = url
        self.query = query
        self.timeout = timeout

    def __repr__(self):
        return f'GraphqlProbe({self.url!r})'

    def __call__(self):
        try:
            resp = requests.post(self.url, json={'query': self.query}, timeout=self.timeout)
        except requests.RequestException as e:
            return HealthCheckResult.unreachable(f'API not responding at {self.url}: {e}')
        try:
            payload = resp.json()
        except ValueError:
            return HealthCheckResult.unhealthy(f'HTTP {resp.status_code}, not a JSON response')
        if isinstance(payload, dict) and payload.get('data') is not None:
            return HealthCheckResult.healthy(str(payload['data']))
        errors = payload.get('errors') if isinstance(payload, dict) else None
        return HealthCheckResult.unhealthy(f'HTTP {resp.status_code}, errors: {errors}')


def wait_until_healthy(probe, timeout=30, interval=1):
    """Poll `probe` until it reports healthy. Returns the healthy result.
    Raise TimeoutError if it does not happen within `timeout` seconds."""
    deadline = time.time() + timeout
    while True:
        result = probe()
        if result.is_healthy:
            return result
        log.debug(f'{probe!r} not healthy yet: {result}')
        if time.time() + interval > deadline:
            raise TimeoutError(f'{probe!r} not healthy after {timeout} seconds: {result}')
        time.sleep(interval)
