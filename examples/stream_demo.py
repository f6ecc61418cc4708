#!/usr/bin/env python3
"""
TCP stream demo

This example demonstrates:
- One listener per consumer, bound before any producer connects
- Round-robin pairing of three producers onto two consumers
- Per-connection batches arriving in send order

Pass a YAML file (see simulation.yaml) as the first argument to override defaults.
"""

import logging
import sys

import prodcon


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s: %(message)s")

    if len(sys.argv) > 1:
        config = prodcon.StreamSimulationConfig.from_yaml(sys.argv[1])
    else:
        config = prodcon.StreamSimulationConfig(
            host="127.0.0.1",
            base_port=0,  # ephemeral ports
            producers=3,
            consumers=2,
            producer_rate=10.0,
            consumer_rate=5.0,
            items_per_producer=4,
        )

    report = prodcon.StreamSession(config).run(timeout_s=30.0)

    for name, batches in report.received.items():
        print(f"{name} (port {report.ports.get(name)}):")
        for batch in batches:
            print(f"  {batch}")
    if report.errors:
        print(f"errors: {report.errors}")
        sys.exit(1)


if __name__ == "__main__":
    main()
