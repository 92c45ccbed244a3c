"""
Config Builder Module

Turns validated command-line input into the immutable ContainerConfig
consumed by the container runtime. Every check raises ConfigurationError;
no config is built when any check fails.
"""

import os
from typing import Dict, Iterable, Optional

from models import ContainerConfig, RestartPolicy
from utils import ConfigurationError, logger

# "never" is the monitor's spelling, "no" is Docker's
RESTART_POLICY_ALIASES = {"never": RestartPolicy.NEVER}
VALID_RESTART_POLICIES = ["never", "on-failure", "unless-stopped", "always"]


def parse_port_map(ports: Iterable[str]) -> Dict[str, str]:
    """Build the host -> container port map from [host_ip:]host_port:container_port

    The entry is split at the last colon, so the host side keeps an
    optional leading IP.
    """
    port_map = {}
    for port in ports:
        if ":" not in port:
            raise ConfigurationError(
                f"{port}: invalid format: port: expected [host_ip:]host_port:container_port"
            )
        host_port, _, container_port = port.rpartition(":")
        port_map[host_port] = container_port
    return port_map


def validate_volumes(volumes: Iterable[str]):
    for volume in volumes:
        if ":" not in volume:
            raise ConfigurationError(
                f"{volume}: invalid format: volume: expected volume_name/host_path:container_path"
            )


def parse_restart_policy(value: Optional[str]) -> RestartPolicy:
    if value is None:
        return RestartPolicy.NEVER
    if value in RESTART_POLICY_ALIASES:
        return RESTART_POLICY_ALIASES[value]
    try:
        return RestartPolicy(value)
    except ValueError:
        raise ConfigurationError(
            f"{value}: invalid restart policy: restart-policy: valid restart policies: "
            f"{', '.join(VALID_RESTART_POLICIES)}"
        )


def validate_image_path(image_path: str):
    """Only checks that the path exists; the runtime validates the image itself"""
    if not os.path.exists(image_path):
        raise ConfigurationError(f"Error accessing {image_path}: no such file or directory")


def build_config(
    image_path: str,
    container_name: str = "",
    ports: Iterable[str] = (),
    volume_driver: Optional[str] = None,
    volumes: Iterable[str] = (),
    background: bool = False,
    restart_policy: Optional[str] = None,
    auto_remove: bool = True,
    log_output: bool = True,
    open_stdin: bool = True,
    tty: bool = True,
    only_one_instance_per_image: bool = True,
) -> ContainerConfig:
    """Validate the raw flag values and build the container config"""
    logger.debug("Configuring container service", image_path=image_path)

    validate_image_path(image_path)
    volumes = tuple(volumes)
    validate_volumes(volumes)
    port_map = parse_port_map(ports)
    policy = parse_restart_policy(restart_policy)

    return ContainerConfig(
        container_name=container_name or "",
        port_map=port_map,
        volumes=volumes,
        volume_driver=volume_driver or None,
        restart_policy=policy,
        background=background,
        auto_remove=auto_remove,
        log_output=log_output,
        open_stdin=open_stdin,
        tty=tty,
        only_one_instance_per_image=only_one_instance_per_image,
    )


def render_config(config: ContainerConfig, indent: bool = True) -> str:
    """Render the config as JSON for diagnostics"""
    return config.model_dump_json(indent=2 if indent else None)
