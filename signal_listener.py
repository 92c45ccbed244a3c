"""
Signal Listener Module

Waits in the background for SIGINT, SIGQUIT or SIGTERM. The first one
sets the supervisor's stop token and asks the runtime to stop the
container (not forcefully). Later signals are logged and ignored; a
second signal never escalates to a forced stop.

If the runtime fails to stop the container, the supervisor would stay
blocked in its start call, so the monitor process is ended instead.
"""

import logging
import os
import queue
import signal
import threading
from typing import Callable, Optional, Sequence

from supervisor import ContainerRuntime, StopToken
from utils import ContainerSvcException, get_stop_timeout, logger

STOP_SIGNALS = (signal.SIGINT, signal.SIGQUIT, signal.SIGTERM)

EXIT_STOP_FAILED = 1

_SHUTDOWN = object()


def terminate_monitor(exit_code: int = EXIT_STOP_FAILED):
    """End the process even though the main thread is blocked in the runtime"""
    logger.error("Terminating monitor without a clean container stop", exit_code=exit_code)
    logging.shutdown()
    os._exit(exit_code)


class SignalListener:
    """Turns termination signals into a stop request for the supervisor"""

    def __init__(
        self,
        runtime: ContainerRuntime,
        image_name: str,
        container_name: str,
        stop_token: StopToken,
        signals: Sequence[int] = STOP_SIGNALS,
        on_stop_failure: Callable[[], None] = terminate_monitor,
    ):
        self.runtime = runtime
        self.image_name = image_name
        self.container_name = container_name
        self.stop_token = stop_token
        self.signals = tuple(signals)
        self.on_stop_failure = on_stop_failure
        self.handled = threading.Event()
        self._stop_sent = False
        self._queue = queue.Queue()
        self._previous_handlers = {}
        self._thread: Optional[threading.Thread] = None

    def start(self, install_handlers: bool = True):
        """Register the signal handlers and start the listener thread

        Handlers can only be installed from the main thread.
        """
        if install_handlers:
            logger.debug(
                "Registering signal handlers for stop signals",
                signals=[signal.Signals(s).name for s in self.signals],
            )
            for sig in self.signals:
                self._previous_handlers[sig] = signal.signal(sig, self._on_signal)

        self._thread = threading.Thread(
            target=self._listen, name="stop-signal-listener", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        """Restore the previous handlers and end the listener thread

        Waits at least as long as the runtime's graceful stop timeout so an
        in-flight stop request can finish.
        """
        for sig, handler in self._previous_handlers.items():
            signal.signal(sig, handler)
        self._previous_handlers = {}

        if timeout is None:
            timeout = get_stop_timeout() + 5

        if self._thread is not None:
            self._queue.put(_SHUTDOWN)
            self._thread.join(timeout)
            self._thread = None

    def trigger(self, signum: int = signal.SIGTERM):
        """Request shutdown as if signum had been delivered"""
        self._queue.put(signum)

    def _on_signal(self, signum, frame):
        # Runs in the main thread between bytecodes; hand off and return
        self._queue.put(signum)

    def _listen(self):
        logger.debug("Waiting for stop signals")
        while True:
            signum = self._queue.get()
            if signum is _SHUTDOWN:
                return
            self._handle(signum)

    def _handle(self, signum: int):
        name = _signal_name(signum)

        # The token may already be set by someone else; the stop request
        # to the runtime is still owed once.
        if self._stop_sent:
            logger.warning(
                "Stop already in progress, ignoring signal",
                signal=name,
                image=self.image_name,
            )
            return
        self._stop_sent = True

        logger.info("Received stop signal", signal=name, image=self.image_name)
        self.stop_token.request_stop()
        try:
            self.runtime.stop(self.image_name, self.container_name, False)
        except ContainerSvcException as e:
            logger.error(
                "Failed to stop container",
                image=self.image_name,
                container_name=self.container_name,
                error=e.message,
            )
            self.on_stop_failure()
        except Exception as e:
            logger.error(
                "Failed to stop container",
                image=self.image_name,
                container_name=self.container_name,
                error=str(e),
                exc_info=True,
            )
            self.on_stop_failure()
        finally:
            self.handled.set()


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)
