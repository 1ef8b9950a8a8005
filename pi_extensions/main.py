"""
pi extensions - logging setup and the ``pi-extensions`` console entry point.

Hosts that load the extensions as a plugin should call configure_logging()
once before register(); the CLI does it from its group callback.
"""

from __future__ import annotations

import logging

import structlog

# Free-text fields that may carry whole prompts or model output.
_TRUNCATED_KEYS = ("task", "context", "prompt", "output", "stderr")
_MAX_DISPLAY_LEN = 80


def _truncate_free_text(logger, method_name, event_dict):
    """
    Structlog processor that shortens free-text fields.

    Prompts and model output can be many kilobytes; logs only need enough
    to recognise which task a line is about.
    """
    for key in _TRUNCATED_KEYS:
        val = event_dict.get(key)
        if isinstance(val, str) and len(val) > _MAX_DISPLAY_LEN:
            event_dict[key] = val[:_MAX_DISPLAY_LEN] + "... [truncated]"
    return event_dict


_logging_configured = False


def configure_logging(verbose: bool = False) -> None:
    """Configure structlog and standard-library logging.

    Safe to call more than once: later calls only adjust the level.
    """
    global _logging_configured  # noqa: PLW0603
    level = logging.DEBUG if verbose else logging.WARNING
    if _logging_configured:
        logging.getLogger().setLevel(level)
        return
    _logging_configured = True

    logging.basicConfig(format="%(message)s", level=level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            _truncate_free_text,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


def main() -> None:
    """Entry point for the pi-extensions command."""
    from pi_extensions.cli.app import cli

    cli(obj={})


if __name__ == "__main__":
    main()
