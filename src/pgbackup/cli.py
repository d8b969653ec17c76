import logging
import os
import signal
import threading

import click
from rich.console import Console
from rich.logging import RichHandler

from .constants import DEFAULT_CONFIG_FILE, FAILURE_POLICY_CONTINUE
from .core import BackupRunner
from .errors import BackupError, ConfigError, format_error_chain
from .services.config_loader import ConfigLoader
from .services.scheduler import DailyScheduler

console = Console(stderr=True)


def configure_logging(verbose: bool = False, log_file=None) -> logging.Logger:
    """Set up process-wide logging once and return the ``pgbackup`` logger."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )

    logger = logging.getLogger("pgbackup")
    logger.setLevel(level)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(file_handler)

    return logger


def _install_stop_handlers(scheduler: DailyScheduler, logger):
    def _handle(signum, _frame):
        logger.warning("Received %s; stopping after the current database.", signal.Signals(signum).name)
        scheduler.stop()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _handle)
    return previous


def _restore_handlers(previous):
    for signum, handler in previous.items():
        signal.signal(signum, handler)


@click.command()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--once", is_flag=True, default=False, help="Run a single backup now and exit.")
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Discover databases and print the object keys without dumping or uploading.",
)
@click.option(
    "--schedule-time",
    required=False,
    help="Daily UTC run time (HH:MM or HH:MM:SS). Overrides SCHEDULE_TIME.",
)
@click.option(
    "--continue-on-error",
    is_flag=True,
    default=None,
    help="Keep backing up the remaining databases when one fails.",
)
@click.option(
    "--streaming",
    is_flag=True,
    default=None,
    help="Pipe pg_dump output through gzip to a spooled file instead of buffering in memory.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
def main(config, once, dry_run, schedule_time, continue_on_error, streaming, verbose, log_file):
    """Back up every database on a PostgreSQL server to S3, once a day."""
    config_loader = ConfigLoader()

    try:
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path
        file_values = config_loader.load(resolved_config)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    if verbose is None:
        verbose = bool(file_values.get("verbose", False))
    log_file = log_file or file_values.get("log_file")
    logger = configure_logging(verbose=verbose, log_file=log_file)

    overrides = {
        "schedule_time": schedule_time,
        "failure_policy": FAILURE_POLICY_CONTINUE if continue_on_error else None,
        "streaming": True if streaming else None,
    }

    def load_settings():
        return config_loader.load_settings(os.environ, file_values, overrides)

    try:
        settings = load_settings()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    try:
        if dry_run:
            runner = BackupRunner(settings=settings)
            plan = runner.plan()
            for database, key in plan:
                click.echo(f"{database} -> s3://{settings.bucket}/{key}")
            logger.info("Dry run: %s database(s) would be backed up.", len(plan))
            return

        if once:
            BackupRunner(settings=settings).run()
            return

        stop_event = threading.Event()

        def job():
            # Settings are re-read every tick so rotated credentials apply without a restart.
            BackupRunner(settings=load_settings()).run(stop_event=stop_event)

        scheduler = DailyScheduler(
            job=job,
            logger=logger,
            schedule_time=settings.schedule_time,
            stop_event=stop_event,
        )
        previous_handlers = _install_stop_handlers(scheduler, logger)
        try:
            scheduler.run_forever()
        finally:
            _restore_handlers(previous_handlers)

    except BackupError as exc:
        console.print(f"[bold red]Error:[/bold red] {format_error_chain(exc)}")
        logger.error("Backup failed: %s", exc)
        raise SystemExit(1)
    except Exception:
        logger.exception("Unexpected error")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
