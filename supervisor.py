"""
Supervisor Module

Keeps a single container running: starts it, restarts it after a fixed
delay whenever it exits, and stops restarting once a stop is requested.

The stop flag is the only state shared with the signal listener. A stop
requested between the flag check and the runtime start call still lets
that one final start go ahead; the listener's stop request to the runtime
is what makes it return.
"""

import threading
from typing import Optional, Protocol

from models import ContainerConfig
from utils import (
    CONTAINER_RESTARTS,
    ContainerSvcException,
    DEFAULT_RESTART_DELAY,
    logger,
)


class ContainerRuntime(Protocol):
    def start(self, image_path: str, image_name: str, config: ContainerConfig):
        ...

    def stop(self, image_name: str, container_name: str = "", force: bool = False):
        ...


class StopToken:
    """Set-once stop flag shared by the supervisor and whoever stops it"""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()

    @property
    def stop_requested(self) -> bool:
        return self._event.is_set()

    def request_stop(self) -> bool:
        """Set the flag; True only for the call that actually set it"""
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
            return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleep up to timeout seconds, waking early when stop is requested"""
        return self._event.wait(timeout)


class Supervisor:
    """Runs the container in a loop until the stop token is set"""

    def __init__(
        self,
        runtime: ContainerRuntime,
        image_path: str,
        image_name: str,
        config: ContainerConfig,
        stop_token: Optional[StopToken] = None,
        restart_delay: float = DEFAULT_RESTART_DELAY,
    ):
        self.runtime = runtime
        self.image_path = image_path
        self.image_name = image_name
        self.config = config
        self.stop_token = stop_token or StopToken()
        self.restart_delay = restart_delay

    def run(self) -> int:
        """Run until stopped and return the number of start attempts"""
        logger.debug("Entering the run loop", image=self.image_name)
        attempts = 0

        while not self.stop_token.stop_requested:
            attempts += 1
            if attempts > 1:
                CONTAINER_RESTARTS.inc()
            logger.info("Starting container", image=self.image_name, attempt=attempts)

            try:
                self.runtime.start(self.image_path, self.image_name, self.config)
            except ContainerSvcException as e:
                logger.error(
                    "Failed to start container",
                    image=self.image_name,
                    error=e.message,
                    error_code=e.error_code,
                )
            except Exception as e:
                logger.error(
                    "Failed to start container",
                    image=self.image_name,
                    error=str(e),
                    exc_info=True,
                )

            if not self.stop_token.stop_requested:
                logger.info(
                    "Container exited, restarting after delay",
                    image=self.image_name,
                    delay_seconds=self.restart_delay,
                )
                self.stop_token.wait(self.restart_delay)

        logger.info("Stopping monitoring of container", image=self.image_name)
        return attempts
