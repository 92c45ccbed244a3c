"""
Docker Runtime Module

Docker implementation of the runtime contract used by the supervisor:
start() runs the container and blocks until it exits, stop() asks a
running container to terminate.
"""

import sys
from typing import Dict, List, Optional

import docker
from docker.errors import DockerException, ImageNotFound, NotFound

from models import ContainerConfig, RestartPolicy
from utils import (
    ContainerStartError,
    ContainerStopError,
    get_stop_timeout,
    log_container_operation,
    logger,
)


def build_port_bindings(port_map: Dict[str, str]) -> Dict[str, object]:
    """Convert host -> container port entries into docker-py port bindings

    A host side of "ip:port" becomes an (ip, port) tuple, and several host
    ports published for one container port are grouped in a list.
    """
    bindings = {}
    for host_port, container_port in port_map.items():
        host_ip, _, port = host_port.rpartition(":")
        binding = (host_ip, port) if host_ip else port
        if container_port in bindings:
            existing = bindings[container_port]
            if not isinstance(existing, list):
                existing = [existing]
            existing.append(binding)
            bindings[container_port] = existing
        else:
            bindings[container_port] = binding
    return bindings


def build_run_kwargs(image_name: str, config: ContainerConfig) -> Dict[str, object]:
    """Map the container config onto containers.run() keyword arguments

    Docker refuses auto-remove together with a restart policy other than
    "no", so the restart policy wins and auto-remove is dropped.
    """
    auto_remove = config.auto_remove
    if auto_remove and config.restart_policy != RestartPolicy.NEVER:
        logger.warning(
            "Auto-remove disabled, the container has a restart policy",
            image=image_name,
            restart_policy=config.restart_policy.value,
        )
        auto_remove = False

    run_kwargs = {
        "image": image_name,
        "detach": True,
        "auto_remove": auto_remove,
        "stdin_open": config.open_stdin,
        "tty": config.tty,
        "restart_policy": {"Name": config.restart_policy.value},
    }
    if config.container_name:
        run_kwargs["name"] = config.container_name
    if config.port_map:
        run_kwargs["ports"] = build_port_bindings(config.port_map)
    if config.volumes:
        run_kwargs["volumes"] = list(config.volumes)
    if config.volume_driver:
        run_kwargs["volume_driver"] = config.volume_driver
    return run_kwargs


class DockerRuntime:
    """Runs and stops the monitored container through the Docker engine"""

    def __init__(self, client=None, output=None):
        self._client = client
        self.output = output or sys.stdout

    @property
    def client(self):
        # Created on first use so an unreachable daemon surfaces as a start error
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def start(self, image_path: str, image_name: str, config: ContainerConfig) -> Optional[int]:
        """Run a container of the image and block until it exits

        Returns the container exit code, or None when the container was
        removed before its exit code could be read.
        """
        try:
            self._ensure_image(image_path, image_name)
            if config.only_one_instance_per_image:
                self._stop_image_instances(image_name)
            if config.container_name:
                self._remove_stale_container(config.container_name)

            container = self.client.containers.run(**build_run_kwargs(image_name, config))
            log_container_operation(
                "start", image_name, "success", {"container_id": container.id}
            )

            if config.log_output or not config.background:
                self._relay_output(container, config)

            exit_code = self._wait(container)
        except (DockerException, OSError) as e:
            # OSError covers an unreadable image tarball and lost daemon connections
            log_container_operation("start", image_name, "error", {"error": str(e)})
            raise ContainerStartError(f"Failed to run container of image {image_name}: {e}")

        logger.info("Container exited", image=image_name, exit_code=exit_code)
        return exit_code

    def stop(self, image_name: str, container_name: str = "", force: bool = False):
        """Stop the named container, or every running container of the image"""
        try:
            if container_name:
                try:
                    containers = [self.client.containers.get(container_name)]
                except NotFound:
                    logger.info("Container already removed", container_name=container_name)
                    return
            else:
                containers = self._running_instances(image_name)

            for container in containers:
                if force:
                    logger.info("Killing container", container_name=container.name)
                    container.kill()
                else:
                    logger.info("Stopping container", container_name=container.name)
                    container.stop(timeout=get_stop_timeout())
                log_container_operation(
                    "kill" if force else "stop",
                    image_name,
                    "success",
                    {"container_name": container.name},
                )
        except NotFound:
            logger.info("Container already stopped", image=image_name)
        except DockerException as e:
            log_container_operation("stop", image_name, "error", {"error": str(e)})
            raise ContainerStopError(f"Failed to stop container of image {image_name}: {e}")

    def _ensure_image(self, image_path: str, image_name: str):
        try:
            self.client.images.get(image_name)
            return
        except ImageNotFound:
            logger.info("Loading image", image=image_name, image_path=image_path)

        with open(image_path, "rb") as f:
            self.client.images.load(f.read())

    def _running_instances(self, image_name: str) -> List:
        return self.client.containers.list(filters={"ancestor": image_name})

    def _stop_image_instances(self, image_name: str):
        for container in self._running_instances(image_name):
            logger.info(
                "Stopping running instance of image",
                image=image_name,
                container_name=container.name,
            )
            container.stop(timeout=get_stop_timeout())

    def _remove_stale_container(self, container_name: str):
        try:
            container = self.client.containers.get(container_name)
        except NotFound:
            return
        logger.info("Removing stale container", container_name=container_name)
        container.remove(force=True)

    def _relay_output(self, container, config: ContainerConfig):
        """Follow the container output until it closes"""
        try:
            for chunk in container.logs(stream=True, follow=True):
                text = chunk.decode("utf-8", errors="replace")
                if not config.background:
                    self.output.write(text)
                    self.output.flush()
                if config.log_output:
                    line = text.rstrip("\r\n")
                    if line:
                        logger.info("Container output", container_name=container.name, line=line)
        except NotFound:
            # auto-removed before the stream was opened
            pass

    def _wait(self, container) -> Optional[int]:
        try:
            result = container.wait()
        except NotFound:
            return None
        return result.get("StatusCode")
