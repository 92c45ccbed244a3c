"""
Container service monitor command line.

Runs a docker container as a service: the container is started, restarted
whenever it exits on its own, and stopped on SIGINT, SIGQUIT or SIGTERM.

    containersvcmon [options] path_to_docker_image docker_image_name/ID
"""

import argparse
import sys
from typing import Optional, Sequence

from dotenv import load_dotenv

from config_builder import VALID_RESTART_POLICIES, build_config, render_config
from docker_runtime import DockerRuntime
from signal_listener import SignalListener
from supervisor import ContainerRuntime, StopToken, Supervisor
from utils import (
    ConfigurationError,
    configure_logging,
    get_restart_delay,
    logger,
    start_metrics_server,
)

EXIT_INVALID_USAGE = 255


class ArgumentParser(argparse.ArgumentParser):
    """Reports argument errors as ConfigurationError instead of exiting with 2"""

    def error(self, message):
        raise ConfigurationError(message)


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="containersvcmon",
        usage="%(prog)s [options] path_to_docker_image docker_image_name/ID",
        description="Run a docker container as a service/daemon.",
    )
    parser.add_argument("image_path", help="Path to the docker image tarball")
    parser.add_argument("image_name", help="Docker image name or ID")
    parser.add_argument("--container-name", default="", help="Name of the container")
    parser.add_argument(
        "--port",
        dest="ports",
        action="append",
        default=[],
        help="Port mapping(s) between host and container in the format: "
        "[host_ip:]host_port:container_port",
    )
    parser.add_argument(
        "--volume-driver", default="", help="Optional volume driver for the container"
    )
    parser.add_argument(
        "--volume",
        dest="volumes",
        action="append",
        default=[],
        help="Volumes to be mounted in the container in the format: "
        "volume_name/host_path:container_path",
    )
    parser.add_argument(
        "--background", action="store_true", help="Run the container in the background"
    )
    parser.add_argument(
        "--restart-policy",
        default=None,
        help="Restart policy to be used for the container. Valid restart policies: "
        + ", ".join(VALID_RESTART_POLICIES),
    )
    parser.add_argument(
        "--auto-remove",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Automatically remove container when it exits",
    )
    parser.add_argument(
        "--log",
        dest="log_output",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Log the logs generated by the container",
    )
    parser.add_argument(
        "--interactive",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Keep stdin open even if not attached",
    )
    parser.add_argument(
        "--tty",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Attach standard streams to a tty, including stdin if it is not closed",
    )
    parser.add_argument(
        "--one-instance",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Only one container instance of the image can be running",
    )
    parser.add_argument(
        "--restart-delay",
        type=float,
        default=None,
        help="Seconds to wait before restarting an exited container "
        "(default: $CONTAINERSVC_RESTART_DELAY or 2)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=0,
        help="Serve Prometheus metrics on this port (0 disables)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    return parser


def main(
    argv: Optional[Sequence[str]] = None,
    runtime: Optional[ContainerRuntime] = None,
    install_signal_handlers: bool = True,
) -> int:
    """Parse the command line, then supervise the container until stopped"""
    load_dotenv()
    parser = build_parser()

    try:
        args = parser.parse_args(argv)
        configure_logging(args.verbose)
        config = build_config(
            args.image_path,
            container_name=args.container_name,
            ports=args.ports,
            volume_driver=args.volume_driver,
            volumes=args.volumes,
            background=args.background,
            restart_policy=args.restart_policy,
            auto_remove=args.auto_remove,
            log_output=args.log_output,
            open_stdin=args.interactive,
            tty=args.tty,
            only_one_instance_per_image=args.one_instance,
        )
        restart_delay = (
            args.restart_delay if args.restart_delay is not None else get_restart_delay()
        )
    except (ConfigurationError, ValueError) as e:
        print(f"{parser.prog}: error: {e}", file=sys.stderr)
        parser.print_help(sys.stderr)
        return EXIT_INVALID_USAGE

    logger.info("Container service config", config=render_config(config, indent=False))
    start_metrics_server(args.metrics_port)

    runtime = runtime or DockerRuntime()
    stop_token = StopToken()
    listener = SignalListener(
        runtime, args.image_name, config.container_name, stop_token
    )
    listener.start(install_handlers=install_signal_handlers)

    supervisor = Supervisor(
        runtime,
        args.image_path,
        args.image_name,
        config,
        stop_token=stop_token,
        restart_delay=restart_delay,
    )
    try:
        supervisor.run()
    finally:
        listener.stop()

    return 0


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
