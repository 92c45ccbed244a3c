import logging
import os
import sys
from typing import Optional, Dict, Any

import structlog
from prometheus_client import Counter, start_http_server

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger("containersvcmon")

# Prometheus metrics
CONTAINER_OPERATIONS = Counter(
    "container_operations_total", "Container operations", ["operation", "status"]
)
CONTAINER_RESTARTS = Counter(
    "container_restarts_total", "Number of times the container was restarted"
)

# Environment defaults, overridden by command-line flags
DEFAULT_RESTART_DELAY = 2.0
DEFAULT_STOP_TIMEOUT = 10


def get_restart_delay() -> float:
    """Backoff between a container exit and the next start attempt"""
    return float(os.getenv("CONTAINERSVC_RESTART_DELAY", DEFAULT_RESTART_DELAY))


def get_stop_timeout() -> int:
    """Seconds Docker waits for a graceful stop before killing"""
    return int(os.getenv("CONTAINERSVC_STOP_TIMEOUT", DEFAULT_STOP_TIMEOUT))


def configure_logging(verbose: bool = False, stream=None):
    """Send log lines to stderr at INFO, or DEBUG when verbose"""
    level_name = "DEBUG" if verbose else os.getenv("CONTAINERSVC_LOG_LEVEL", "INFO")
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)


def start_metrics_server(port: int):
    """Expose Prometheus metrics over HTTP; port 0 disables it"""
    if port:
        start_http_server(port)
        logger.info("Metrics server started", port=port)


def log_container_operation(
    operation: str, image: str, status: str, details: Dict[str, Any] = None
):
    """Log container operations with structured logging"""
    logger.info(
        "Container operation",
        operation=operation,
        image=image,
        status=status,
        details=details or {},
    )
    CONTAINER_OPERATIONS.labels(operation=operation, status=status).inc()


# Error handling utilities
class ContainerSvcException(Exception):
    """Base exception for the container service monitor"""

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)


class ConfigurationError(ContainerSvcException):
    """Invalid command-line arguments or flag values"""

    def __init__(self, message: str):
        super().__init__(message, "INVALID_CONFIG")


class ContainerStartError(ContainerSvcException):
    """The runtime failed to launch or run the container"""

    def __init__(self, message: str):
        super().__init__(message, "START_FAILED")


class ContainerStopError(ContainerSvcException):
    """The runtime failed to stop the container"""

    def __init__(self, message: str):
        super().__init__(message, "STOP_FAILED")
