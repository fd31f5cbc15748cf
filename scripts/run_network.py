#!/usr/bin/env python3

# Start a few local dev nodes under supervision and print their status.
# Nodes are left running in the background, stop them with STOP=1.

import os
import sys
from os.path import abspath

from noderunner import Network, Seq, setup_logger

nodes = int(os.getenv('NODES', '4'))
workdir = abspath(os.getenv('WORKDIR', '/tmp/midnight-nodes'))
binary = abspath(os.getenv('MO_BINARY', './target/release/midnight-node'))

names = ['Alice', 'Bob', 'Charlie', 'Dave', 'Eve', 'Ferdie'][:nodes]

setup_logger()
network = Network(workdir).new(binary, names)
network.set_flags('no-mdns', port=Seq(30333), rpc_port=Seq(9944))

if os.getenv('STOP'):
    sys.exit(1 if network.stop() else 0)

failed = network.start()
if failed:
    print(f'Failed to start: {", ".join(failed)}')
    sys.exit(1)

network.wait_until_healthy(timeout=60)
network.status()
network.resources()
print('Exiting script, leaving nodes running in the background')
