import sys
from pathlib import Path

from ...setup.config.models import CONNECTION_RE
from ...setup.logging import logger


def collect_cli_errors(args) -> list:
    """Return a human-readable message for every invalid argument."""
    errors = []

    for label, value in (("true_file", args.true_file), ("false_file", args.false_file)):
        if not Path(value).is_file():
            errors.append(f"File does not exist: {value} ({label})")

    if CONNECTION_RE.fullmatch(args.connection.strip()) is None:
        errors.append(
            f"Invalid connection string: {args.connection!r}. "
            "Expected user:password@host:port/database"
        )

    if args.threads is not None and args.threads < 1:
        errors.append(f"Invalid threads: {args.threads} (must be >= 1)")

    if args.batch_size is not None and args.batch_size < 1:
        errors.append(f"Invalid batch size: {args.batch_size} (must be >= 1)")

    return errors


def validate_cli_arguments(args):
    """
    Validate parsed CLI arguments before any database activity.

    Raises:
        SystemExit: If any argument is invalid.
    """
    errors = collect_cli_errors(args)
    if errors:
        logger.error("Invalid arguments detected:")
        for i, error in enumerate(errors, 1):
            logger.error(f"  {i}. {error}")
        logger.error("Use --help for usage examples.")
        sys.exit(1)
