#!/usr/bin/env python3
"""
Bounded buffer demo

This example demonstrates:
- Three producers and two consumers sharing a ring buffer of five slots
- Watching occupancy while the simulation runs
- Stopping every actor, including those blocked on a full buffer
"""

import logging
import time

import prodcon


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s: %(message)s")

    config = prodcon.BufferSimulationConfig(
        capacity=5,
        producers=3,
        consumers=2,
        production_interval_s=0.2,
        consumption_interval_s=0.5,  # consumers are slower, so the buffer fills
    )
    log = prodcon.EventLog(forward_to=logging.getLogger("prodcon.demo"))

    with prodcon.BufferSession(config, log=log, seed=0) as session:
        for _ in range(10):
            time.sleep(0.3)
            print(f"occupancy {session.buffer.occupancy}/{config.capacity}")

    report = session.report()
    print(f"inserted={report.inserted} removed={report.removed} state={report.state.value}")
    print(f"last events: {log.snapshot()[-3:]}")


if __name__ == "__main__":
    main()
