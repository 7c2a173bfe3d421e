import logging
from logging.config import dictConfig

from rich.console import Console
from rich.logging import RichHandler

_NOISY_LOGGERS = ("urllib3", "github", "httpx", "anthropic", "openai")


def _stderr_handler(rich_tracebacks: bool = False) -> logging.Handler:
    # stdout stays free for reports written with --output -.
    return RichHandler(console=Console(stderr=True), show_path=False, markup=False, rich_tracebacks=rich_tracebacks)


def configure_logging(verbose: bool = False) -> None:
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(name)s: %(message)s",
                    "datefmt": "%H:%M:%S",
                }
            },
            "handlers": {
                "console": {
                    "()": _stderr_handler,
                    "formatter": "default",
                    "rich_tracebacks": verbose,
                }
            },
            "root": {
                "handlers": ["console"],
                "level": "DEBUG" if verbose else "WARNING",
            },
        }
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
