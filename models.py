from enum import Enum
from typing import Optional, Dict, Tuple

from pydantic import BaseModel, ConfigDict


class RestartPolicy(str, Enum):
    NEVER = "no"
    ON_FAILURE = "on-failure"
    UNLESS_STOPPED = "unless-stopped"
    ALWAYS = "always"


class ContainerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    container_name: str = ""
    port_map: Dict[str, str] = {}  # e.g., {"127.0.0.1:80": "8080"}
    volumes: Tuple[str, ...] = ()  # e.g., ("data:/var/lib/data",), mount order kept
    volume_driver: Optional[str] = None
    restart_policy: RestartPolicy = RestartPolicy.NEVER
    background: bool = False
    auto_remove: bool = True
    log_output: bool = True
    open_stdin: bool = True
    tty: bool = True
    only_one_instance_per_image: bool = True
