"""Serve until interrupted: races the HTTP listener against SIGINT."""

import asyncio
import logging
import signal

from aiohttp import web

from .models import LifecycleState, ShutdownCause, ShutdownEvent

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("mdm_server.http")


class LifecycleCoordinator:
    """Runs the listener and a signal watcher; the first to finish ends the process.

    There is no graceful drain: the losing task is cancelled and whatever it
    would have produced is discarded.
    """

    def __init__(
        self,
        app: web.Application,
        host: str,
        port: int,
        signals: tuple[signal.Signals, ...] = (signal.SIGINT,),
    ) -> None:
        self.app = app
        self.host = host
        self.port = port
        self.signals = signals
        self.state = LifecycleState.STARTING
        self.addresses: list = []
        self.serving = asyncio.Event()

    async def _watch_signals(self) -> ShutdownEvent:
        loop = asyncio.get_running_loop()
        received: asyncio.Future[signal.Signals] = loop.create_future()

        def _on_signal(sig: signal.Signals) -> None:
            if not received.done():
                received.set_result(sig)

        for sig in self.signals:
            loop.add_signal_handler(sig, _on_signal, sig)
        try:
            sig = await received
        finally:
            for sig_to_remove in self.signals:
                loop.remove_signal_handler(sig_to_remove)
        return ShutdownEvent(ShutdownCause.INTERRUPT, sig.name)

    async def _serve(self) -> ShutdownEvent:
        runner = web.AppRunner(self.app, access_log=access_logger, shutdown_timeout=0)
        try:
            await runner.setup()
            site = web.TCPSite(runner, self.host, self.port)
            await site.start()
        except OSError as e:
            await runner.cleanup()
            return ShutdownEvent(ShutdownCause.TRANSPORT_ERROR, str(e))

        self.addresses = list(runner.addresses)
        self.state = LifecycleState.SERVING
        self.serving.set()
        logger.info("Listening", extra={"transport": "HTTP", "addr": f"{self.host}:{self.port}"})

        try:
            # aiohttp serves in the background; block until cancelled.
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()
        return ShutdownEvent(ShutdownCause.TRANSPORT_ERROR, "listener closed")

    async def run(self) -> ShutdownEvent:
        """Serve until SIGINT or a fatal listener error.

        Returns:
            The event that won the race
        """
        watchers = {
            asyncio.create_task(self._watch_signals(), name="signal-watcher"),
            asyncio.create_task(self._serve(), name="http-listener"),
        }
        done, pending = await asyncio.wait(watchers, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        event = next(iter(done)).result()
        self.state = LifecycleState.TERMINATED
        return event
