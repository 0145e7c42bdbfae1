#!/usr/bin/env python3
"""Browser Log Collector — Entry Point.

Attaches to a browser started with --remote-debugging-port and appends all
console output, exceptions and failed requests of its tabs to a JSONL file
until the browser exits.
"""

import asyncio
import logging
import sys

from browser_log_collector.cdp import CDPClient
from browser_log_collector.config import Config, load_config
from browser_log_collector.supervisor import Collector

logger = logging.getLogger(__name__)


async def run_collector(config: Config) -> int:
    async with CDPClient(config.host, config.port, probe_timeout=config.probe_timeout) as client:
        collector = Collector(config, client)
        collector.install_signal_handlers()
        return await collector.run()


def main(argv: list[str] | None = None):
    try:
        config = load_config(argv)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [COLLECTOR] %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    logger.info("Config: %s:%d -> %s (max %d bytes, probe every %.1fs)",
                config.host, config.port, config.output,
                config.max_size_bytes, config.probe_interval)

    sys.exit(asyncio.run(run_collector(config)))


if __name__ == "__main__":
    main()
