import logging
import sys
from typing import Any

import structlog
import typer

from apps.dmctl.analysis import app as analysis
from apps.dmctl.jobs import app as jobs
from apps.dmctl.methods import app as methods
from apps.dmctl.scheduler import app as scheduler


app = typer.Typer(help="Datamonkey job orchestration command line interface")


def _stderr_logger(*_: Any) -> structlog.PrintLogger:
    # Resolved per call so redirected streams are honoured.
    return structlog.PrintLogger(file=sys.stderr)


def configure_logging(verbose: int = 0) -> None:
    """Send structured logs to stderr, showing warnings unless *verbose*."""

    level = max(logging.WARNING - 10 * verbose, logging.DEBUG)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=_stderr_logger,
    )


@app.callback()
def root(
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Show more log output; repeat for debug messages.",
    ),
) -> None:
    configure_logging(verbose)


app.add_typer(analysis)
app.add_typer(jobs)
app.add_typer(scheduler)
app.add_typer(methods)
