# src/focus_sync/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, loads the task list, then runs the
console REPL on one asyncio event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from ..cli.bootstrap import create_initial_state, shutdown_state
from ..config import get_settings
from ..connectors.console_connector import ConsoleNotifier, run_console_loop
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def _run(settings) -> None:
    state = create_initial_state(settings=settings, notifier=ConsoleNotifier())
    try:
        # Failures surface as a notice; the REPL still starts.
        await state.repository.refresh()
        await run_console_loop(state)
    finally:
        await shutdown_state(state)


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_dir = getattr(settings, "data_dir", ".local/focus")
    setup_logging(log_dir=log_dir, console_level=console_level)

    logger.info("Starting %s...", getattr(settings, "app_name", "focus"))

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(_run(settings))

    logger.info("Bye.")


if __name__ == "__main__":
    main()
