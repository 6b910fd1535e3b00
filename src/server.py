"""Protean Engine runner for the commerce domain.

Under the production overlay events are processed asynchronously: the
Engine's outbox processor publishes them to the broker and its stream
subscriptions invoke projectors such as the stock movement log.

Usage:
    python src/server.py
"""

import asyncio

from protean.server.engine import Engine

from commerce.domain import commerce
from commerce.utils.logging import configure_logging


async def run():
    configure_logging()
    commerce.init()
    await Engine(commerce).run()


def main():
    asyncio.run(run())


if __name__ == "__main__":
    main()
