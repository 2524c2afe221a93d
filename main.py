#!/usr/bin/env python
"""Order feed entry point.

Runs the feed headless on a Qt core application with qasync event loop
integration and logs the projected list whenever it changes.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path

import qasync
from PySide6.QtCore import QCoreApplication

from orderfeed.app import ApplicationContext
from orderfeed.services.view_projector import FeedView

logger = logging.getLogger("orderfeed")


def describe(view: FeedView) -> str:
    """One-line summary of a projected view."""
    return f"Showing {view.count} / {view.loaded_count} orders, total {view.total:.2f}"


def bind_console(ctx: ApplicationContext) -> None:
    """Log feed changes to the console."""
    state = ctx.state
    state.view.subscribe(lambda view: logger.info(describe(view)))
    state.listening.subscribe(
        lambda on: logger.info("Realtime: listening" if on else "Realtime: not listening")
    )

    def on_error(message):
        if message:
            kind = state.error_kind.value
            logger.error(f"{message} ({kind.value})" if kind else message)

    def on_hint(hint):
        if hint:
            logger.warning(hint)

    state.error_message.subscribe(on_error)
    state.hint.subscribe(on_hint)


def run() -> None:
    """Run the feed with qasync event loop."""
    app = QCoreApplication(sys.argv)
    app.setApplicationName("OrderFeed")

    settings_path = Path(sys.argv[1]) if len(sys.argv) > 1 else None
    ctx = ApplicationContext(settings_path)
    bind_console(ctx)

    loop = qasync.QEventLoop(app)
    asyncio.set_event_loop(loop)

    async def do_cleanup_and_quit():
        print("Cleaning up...")
        await ctx.close()
        print("Goodbye!")
        app.quit()

    def on_interrupt(*_):
        asyncio.ensure_future(do_cleanup_and_quit())

    signal.signal(signal.SIGINT, on_interrupt)
    if hasattr(signal, "SIGHUP"):
        # Manual refresh
        signal.signal(signal.SIGHUP, lambda *_: asyncio.ensure_future(ctx.refresh()))

    with loop:
        try:
            loop.run_until_complete(ctx.initialize())
        except ValueError as e:
            print(f"Error: {e}")
            print(f"Configure the database in {ctx.settings_store.path}")
            return

        try:
            loop.run_forever()
        except KeyboardInterrupt:
            print("\nShutting down...")
            loop.run_until_complete(ctx.close())


if __name__ == "__main__":
    run()
