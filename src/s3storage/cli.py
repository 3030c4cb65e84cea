"""CLI entry point for s3storage."""

import argparse
import logging
import sys
from pathlib import Path

from prometheus_client import generate_latest

from s3storage import metrics
from s3storage.client import S3Storage
from s3storage.config import load_config
from s3storage.errors import DoesNotExistError, S3StorageError
from s3storage.logging_config import configure_logging

EXIT_ERROR = 1
EXIT_NOT_FOUND = 2


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        prog="s3storage",
        description="s3storage - byte-object access to an S3-compatible bucket",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("s3storage.yaml"),
        help="Path to YAML configuration file (default: s3storage.yaml)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (default: WARNING)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        default="text",
        choices=["text", "json"],
        help="Log format: 'text' (human-readable) or 'json' (structured)",
    )
    parser.add_argument(
        "--metrics",
        action="store_true",
        help="Print Prometheus metrics to stderr after the command",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    ls = commands.add_parser("ls", help="List objects under a prefix")
    ls.add_argument("prefix", nargs="?", default="")

    cat = commands.add_parser("cat", help="Write an object's bytes to stdout")
    cat.add_argument("name")
    cat.add_argument("--offset", type=int, default=0)
    cat.add_argument("--length", type=int, default=-1)

    stat = commands.add_parser("stat", help="Show an object's size and modification time")
    stat.add_argument("name")

    exists = commands.add_parser("exists", help="Exit 0 if the object exists, 2 if not")
    exists.add_argument("name")

    put = commands.add_parser("put", help="Upload a local file as an object")
    put.add_argument("name")
    put.add_argument("file", type=Path)

    rm = commands.add_parser("rm", help="Delete an object")
    rm.add_argument("name")

    return parser.parse_args(argv)


def run(storage: S3Storage, args: argparse.Namespace) -> int:
    """Execute one command against ``storage`` and return the exit code."""
    out = sys.stdout

    if args.command == "ls":
        for info in storage.list(args.prefix):
            mod_time = info.mod_time.isoformat() if info.mod_time else "-"
            out.write(f"{info.size:>12} {mod_time} {info.name}\n")
        return 0

    if args.command == "cat":
        if args.offset == 0 and args.length == -1:
            data = storage.read(args.name)
        else:
            data = storage.read_range(args.name, args.offset, args.length)
        out.buffer.write(data)
        out.flush()
        return 0

    if args.command == "stat":
        info = storage.stat(args.name)
        mod_time = info.mod_time.isoformat() if info.mod_time else "-"
        out.write(f"name: {info.name}\nsize: {info.size}\nmodified: {mod_time}\n")
        return 0

    if args.command == "exists":
        return 0 if storage.exists(args.name) else EXIT_NOT_FOUND

    if args.command == "put":
        storage.write(args.name, args.file.read_bytes())
        return 0

    if args.command == "rm":
        storage.remove(args.name)
        return 0

    raise ValueError(f"unknown command {args.command!r}")


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the s3storage CLI.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].
    """
    args = parse_args(argv)
    configure_logging(level=args.log_level, fmt=args.log_format)
    logger = logging.getLogger("s3storage")
    if args.metrics:
        metrics.init_metrics()

    try:
        config = load_config(args.config)
    except FileNotFoundError:
        logger.error("Config file not found: %s", args.config)
        sys.exit(EXIT_ERROR)
    except S3StorageError as exc:
        logger.error("Failed to load config: %s", exc)
        sys.exit(EXIT_ERROR)

    try:
        storage = S3Storage(config)
    except S3StorageError as exc:
        logger.error("Failed to create storage: %s", exc)
        sys.exit(EXIT_ERROR)

    try:
        code = run(storage, args)
    except DoesNotExistError as exc:
        logger.error("%s", exc)
        code = EXIT_NOT_FOUND
    except S3StorageError as exc:
        logger.error("%s failed: %s", args.command, exc)
        code = EXIT_ERROR
    except OSError as exc:
        logger.error("%s failed: %s", args.command, exc)
        code = EXIT_ERROR
    finally:
        storage.close()

    if args.metrics:
        sys.stderr.write(generate_latest().decode("utf-8"))

    sys.exit(code)


if __name__ == "__main__":
    main()
