"""CLI entry point for prometheus-sd."""

import argparse
import logging
import sys

import yaml
from redis.exceptions import RedisError

from .backoff import connect
from .config import SDConfig, build_config
from .errors import ConfigError, PrometheusSDError
from .monitor import run_discovery
from .registry import (
    RegistryKeys,
    RegistryStore,
    ServiceInstance,
    parse_labels,
    register_instance,
    unregister_instance,
)
from .systemd import DEFAULT_ENV_FILE, render_env_file, render_unit, write_file

logger = logging.getLogger(__name__)

DISCOVER_HELP = """Discover services in the environment.

This is a long-running process that will continuously monitor Redis for the
registration of new services and, upon any modifications to the service
registry, write the services as JSON to an output path where it can be picked
up by Prometheus' file-based discovery process.
"""


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        stream=sys.stderr,
        format="[%(asctime)s %(levelname)s %(name)s] %(message)s",
    )


def _port(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid port number: {value!r}") from None
    if not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"Invalid port number: {value}")
    return port


def _store(client, config: SDConfig) -> RegistryStore:
    keys = RegistryKeys(namespace=config.namespace, service_set=config.service_set_key)
    return RegistryStore(client, keys)


def cmd_register(args, config: SDConfig) -> None:
    """Register a new service instance."""
    instance = ServiceInstance(
        service_name=args.service_key,
        host=args.host,
        port=args.port,
        job_name=args.job_name,
        labels=parse_labels(args.label),
        metrics_path=config.metrics_path,
    )
    client = connect(config)
    register_instance(_store(client, config), instance)


def cmd_unregister(args, config: SDConfig) -> None:
    """Remove a service, or a single target of a service."""
    client = connect(config)
    unregister_instance(_store(client, config), args.service_key, host=args.host)


def cmd_discover(args, config: SDConfig) -> None:
    """Write the service file and keep it up to date. Does not return."""
    if not config.output:
        raise ConfigError("--output is required (or set 'output' in the config file)")
    client = connect(config)
    run_discovery(client, _store(client, config), config.output)


def cmd_systemd_unit(args, config: SDConfig) -> None:
    """Render a systemd unit (and optionally its environment file)."""
    env_file = args.env_file or DEFAULT_ENV_FILE
    unit = render_unit(config, env_file=env_file, executable=args.executable)
    if args.unit_output:
        write_file(args.unit_output, unit)
    else:
        print(unit, end="")
    if args.env_file:
        write_file(args.env_file, render_env_file(config))


def _add_help(parser: argparse.ArgumentParser) -> None:
    """Bind help to -? since -h is taken by --host."""
    parser.add_argument(
        "-?", "--help", action="help", default=argparse.SUPPRESS,
        help="Show this help message and exit",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prometheus-sd",
        description="Simple redis-based service discovery for Prometheus",
    )
    parser.add_argument(
        "-r", "--redis-url", type=str, dest="redis_url",
        help="URL for Redis server (default 'redis://localhost:6379', env PROMETHEUS_SD_REDIS_URL)",
    )
    parser.add_argument(
        "-t", "--max-timeout", type=int, dest="max_timeout",
        help="Maximum time in seconds to try initially connecting to Redis "
             "(default 28800 = 8 hours, env PROMETHEUS_SD_REDIS_TIMEOUT)",
    )
    parser.add_argument("--config", type=str, help="Path to YAML config file")
    parser.add_argument(
        "--log-level", type=str, dest="log_level",
        help="Log level (default: WARNING, env PROMETHEUS_SD_LOG_LEVEL)",
    )
    subparsers = parser.add_subparsers(dest="command")

    # register
    register_parser = subparsers.add_parser(
        "register", add_help=False,
        help="Register a new service instance in the environment",
    )
    _add_help(register_parser)
    register_parser.add_argument("service_key", metavar="SERVICE_KEY", help="Sets the service key to use")
    register_parser.add_argument(
        "-j", "--job-name", type=str, dest="job_name",
        help="Job name for the given service. Defaults to the service key.",
    )
    register_parser.add_argument(
        "-l", "--label", nargs=2, action="append", metavar=("KEY", "VALUE"),
        help="Labels to add to the service instance. Can be specified multiple times.",
    )
    register_parser.add_argument(
        "-m", "--metrics-path", type=str, dest="metrics_path",
        help="Metrics path for the service. Defaults to /metrics.",
    )
    register_parser.add_argument("-h", "--host", type=str, required=True, help="Hostname for the service.")
    register_parser.add_argument(
        "-p", "--port", type=_port, required=True, help="Port the metrics are exported at.",
    )
    register_parser.set_defaults(func=cmd_register)

    # unregister
    unregister_parser = subparsers.add_parser(
        "unregister", add_help=False,
        help="Remove a service or a target for a service in the environment",
    )
    _add_help(unregister_parser)
    unregister_parser.add_argument("service_key", metavar="SERVICE_KEY", help="Name of the service")
    unregister_parser.add_argument(
        "-h", "--host", type=str, default=None,
        help="Host (prefix) of the target to remove. Removes the whole service if omitted.",
    )
    unregister_parser.set_defaults(func=cmd_unregister)

    # discover
    discover_parser = subparsers.add_parser(
        "discover", help="Discover services in the environment",
        description=DISCOVER_HELP, formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    discover_parser.add_argument(
        "-o", "--output", type=str, help="File to write the service definitions to",
    )
    discover_parser.set_defaults(func=cmd_discover)

    # systemd-unit
    unit_parser = subparsers.add_parser(
        "systemd-unit", help="Render a systemd unit running the discovery service",
    )
    unit_parser.add_argument(
        "-o", "--output", type=str,
        help="Service file path the unit passes to `discover`",
    )
    unit_parser.add_argument(
        "--unit-output", type=str, dest="unit_output",
        help="Write the unit here instead of printing it",
    )
    unit_parser.add_argument(
        "--env-file", type=str, dest="env_file",
        help=f"Also write the environment file here (default referenced path: {DEFAULT_ENV_FILE})",
    )
    unit_parser.add_argument(
        "--executable", type=str, default=None,
        help="Command used in ExecStart (default: the installed prometheus-sd)",
    )
    unit_parser.set_defaults(func=cmd_systemd_unit)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        config = build_config(args)
    except (ConfigError, OSError, yaml.YAMLError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.log_level)

    try:
        args.func(args, config)
    except RedisError as exc:
        logger.error("Problem connecting to Redis: %s", exc)
        sys.exit(1)
    except PrometheusSDError as exc:
        logger.error("%s", exc)
        sys.exit(1)
