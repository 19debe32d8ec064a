"""Entry point for the taskcal service."""

import asyncio
import contextlib

from taskcal.api.server import run_server
from taskcal.logging import setup_logging


def main() -> None:
    """Start the calendar sync service."""
    setup_logging()
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run_server())


if __name__ == "__main__":
    main()
