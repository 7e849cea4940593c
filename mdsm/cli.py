"""CLI interface for mdsm."""

import os
import sys
from pathlib import Path

import click

from . import __version__
from .config import load_config
from .durations import format_duration
from .errors import MdsmError
from .logs import attach_run_log, setup_logging
from .queue import JobQueue
from .retention import sweep_logs
from .scheduler import Scheduler, become_group_leader
from .storage import Storage


@click.group()
@click.version_option(__version__, prog_name="mdsm")
def cli():
    """mdsm - multi-threaded TSM backup scheduler"""
    pass


@cli.command()
@click.argument("config_file", type=click.Path(dir_okay=False))
def run(config_file: str):
    """Back up every target, at most MAXPROC at a time.

    Exits with the highest agent return code, or 255 when interrupted
    before any job finished.

    Example:
        mdsm run /etc/mdsm/mdsm.ini
    """
    logger = setup_logging()
    config_path = Path(config_file).resolve()
    try:
        config = load_config(config_path)
        storage = Storage.create(config)
        attach_run_log(storage.log_file)
        exempt, queued = JobQueue(config).build()
    except MdsmError as e:
        logger.error(str(e))
        sys.exit(1)

    leader = become_group_leader()
    logger.info("mdsm - multi-threaded tsm backup [%s]", config.mode)
    logger.info("v%s", __version__)
    logger.info("PID: %d", os.getpid())
    if not leader:
        logger.warning("not a process group leader, cleanup limited to own jobs")
    logger.info("timeout: %s", format_duration(config.timeout))
    logger.info("")
    logger.info("config file: %s", config_path)
    logger.info("logging to: %s", storage.log_file)
    logger.info("working directory: %s", storage.run_dir)
    logger.info("")
    sweep_logs(Path(config.toplogdir), config.logret, keep=storage.run_dir)
    logger.info("")

    sys.exit(Scheduler(config, storage).run(exempt, queued))


@cli.command()
@click.argument("config_file", type=click.Path(dir_okay=False))
def targets(config_file: str):
    """List the jobs a run would start, in launch order.

    Example:
        mdsm targets mdsm.ini
    """
    setup_logging(sys.stderr)
    try:
        config = load_config(config_file)
        exempt, queued = JobQueue(config).build()
    except MdsmError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)

    click.echo(f"\n{'Job':<8} {'Gated':<7} Path")
    click.echo("-" * 62)
    for target in exempt + queued:
        gated = "no" if target.exempt else "yes"
        click.echo(f"{target.index:<8} {gated:<7} {target.display_path}")
    click.echo()


@cli.command()
@click.argument("config_file", type=click.Path(dir_okay=False))
def config(config_file: str):
    """Show the effective configuration.

    Example:
        mdsm config mdsm.ini
    """
    setup_logging(sys.stderr)
    try:
        cfg = load_config(config_file)
    except MdsmError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)

    click.echo(f"\nCurrent Configuration ({cfg.mode} mode):")
    for key, value in cfg.model_dump().items():
        if key == "timeout":
            value = format_duration(value)
        click.echo(f"  {key.upper():<14} {value}")
    click.echo()


if __name__ == "__main__":
    cli()
