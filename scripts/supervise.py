#!/usr/bin/env python3

# Operate one of the supported services.
# All settings come from environment variables (MPS_*, INDEXER_*, MO_*), see noderunner.config.
# `monitor` blocks until interrupted, run it in the background for unattended operation.

import argparse
import os
import sys

from tabulate import tabulate

from noderunner import MonitorExhausted, StartFailed, StopFailed, dev_node, indexer, proof_server, setup_logger
from noderunner.process import ROW_HEADERS

COMMANDS = ['start', 'stop', 'restart', 'status', 'health', 'monitor', 'logs']


def get_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Start, stop and watch a local service')

    parser.add_argument('service', choices=['proof-server', 'indexer', 'node'], help='Service to operate')
    parser.add_argument('command', choices=COMMANDS, help='Operation to perform')
    parser.add_argument('--node-name', default=os.getenv('NODE_NAME', 'Alice'),
                        help='Dev node to operate (default: $NODE_NAME or Alice)')
    parser.add_argument('--lines', type=int, default=int(os.getenv('LOG_LINES', '50')),
                        help='Number of log lines shown by `logs`')
    parser.add_argument('--follow', '-f', action='store_true',
                        help='Keep printing new log lines, like `tail -f`')
    parser.add_argument('--log-level', default=os.getenv('LOG_LEVEL', 'INFO'))
    parser.add_argument('--log-file', default=os.getenv('SUPERVISOR_LOG_FILE'),
                        help='Also write supervisor debug logs to this file')

    return parser.parse_args()


def make_service(args):
    if args.service == 'proof-server':
        return proof_server()
    if args.service == 'indexer':
        return indexer()
    return dev_node(args.node_name)


def status(service):
    st = service.status()
    if not st.running:
        print(f'{service.name}: NOT RUNNING')
        return 1
    print(f'{service.name}: RUNNING (PID: {st.pid})')
    if st.resources:
        print(tabulate([st.resources.as_row()], headers=ROW_HEADERS))
    return health(service)


def health(service):
    result = service.health()
    print(f'Health check: {result}')
    return 0 if result is None or result.is_healthy else 1


def logs(service, lines, follow=False):
    if not follow:
        for line in service.logs(lines):
            print(line)
        return 0
    if not os.path.isfile(service.logfile):
        print(f'log file not found: {service.logfile}', file=sys.stderr)
        return 1
    try:
        for line in service.follow_logs(lines):
            print(line, flush=True)
    except KeyboardInterrupt:
        pass
    return 0


def run(service, command, lines=50, follow=False):
    try:
        if command == 'start':
            service.start()
        elif command == 'stop':
            service.stop()
        elif command == 'restart':
            service.restart()
        elif command == 'status':
            return status(service)
        elif command == 'health':
            return health(service)
        elif command == 'monitor':
            service.monitor()
        elif command == 'logs':
            return logs(service, lines, follow)
    except (StartFailed, StopFailed, MonitorExhausted) as e:
        print(f'{service.name}: {e}', file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    args = get_args()
    setup_logger(args.log_level, args.log_file)
    sys.exit(run(make_service(args), args.command, args.lines, args.follow))
