# Project: Subscriber billing bulk loader
# Objective: Load MSISDN/prepaid records into subscriber_billings through a staging table
import argparse
import sys

from .core.exceptions import LoaderError
from .core.job import LoadJob
from .core.progress import RichProgressDisplay
from .core.utils.cli import validate_cli_arguments
from .setup.config import MergePolicy, get_config
from .setup.logging import logger
from .utils.record_source import load_sources

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="billing-loader",
        description="Bulk-load subscriber billing records (msisdn, prepaid) into PostgreSQL.",
        epilog="""
Text files are csv files with a header line followed by msisdn,prepaid rows.
The connection string is expected in the form user:password@host:port/database.
Threads is the number of parallel worker processes; it does not affect performance greatly.
Batch size is the number of records per INSERT; it does affect performance greatly
and should be kept reasonable (recommended < 16k).

Examples:
  %(prog)s prepaid_true.txt prepaid_false.txt bss:bss@localhost:5434/bss 4 8192
  %(prog)s prepaid_true.txt prepaid_false.txt bss:bss@localhost:5434/bss 1 1000 --merge-policy always
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("true_file", help="CSV file with prepaid subscribers")
    parser.add_argument("false_file", help="CSV file with postpaid subscribers")
    parser.add_argument("connection", help="user:password@host:port/database")
    parser.add_argument("threads", type=int, nargs="?", default=None, help="Number of workers (default 1)")
    parser.add_argument("batch_size", type=int, nargs="?", default=None, help="Records per batch (default 1000)")

    options = parser.add_argument_group("Loading options")
    options.add_argument(
        "--merge-policy",
        choices=[policy.value for policy in MergePolicy],
        default=None,
        help="Merge only when every worker succeeded (on_success) or regardless (always)",
    )
    options.add_argument("--target-table", default=None, help="Permanent table (default subscriber_billings)")
    options.add_argument("--staging-table", default=None, help="Staging table (default subscriber_billings_temp)")
    options.add_argument("--no-progress", action="store_true", help="Do not render progress bars")
    return parser


def run(argv=None) -> int:
    """Parse arguments, run the job and return the process exit code."""
    args = build_parser().parse_args(argv)
    validate_cli_arguments(args)

    try:
        config = get_config(
            descriptor=args.connection,
            workers=args.threads,
            batch_size=args.batch_size,
            merge_policy=args.merge_policy,
            target_table=args.target_table,
            staging_table=args.staging_table,
            show_progress=False if args.no_progress else None,
        )
        records = load_sources(args.true_file, args.false_file)

        display = RichProgressDisplay() if config.loading.show_progress else None
        job = LoadJob(config.loading, config.get_database_url(), records, display=display)
        report = job.run()
    except LoaderError as e:
        logger.error(str(e))
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return EXIT_INTERRUPTED

    logger.info(
        f"Done: {report.staged_rows} rows staged by {report.workers} workers, "
        f"{report.merged_rows} new rows merged"
    )
    return 0


def main():
    sys.exit(run())


if __name__ == "__main__":
    main()
