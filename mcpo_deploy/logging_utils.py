import logging
import sys

import click


_STATUS_STYLES = {
    "info": ("[INFO]", "blue"),
    "success": ("[SUCCESS]", "green"),
    "warning": ("[WARNING]", "yellow"),
    "error": ("[ERROR]", "red"),
}


def setup_logging(verbosity: int = 0) -> None:
    level = logging.INFO
    if verbosity >= 1:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def _emit(kind: str, message: str) -> None:
    label, color = _STATUS_STYLES[kind]
    click.echo(f"{click.style(label, fg=color, bold=True)} {message}", err=(kind == "error"))


def print_status(message: str) -> None:
    _emit("info", message)


def print_success(message: str) -> None:
    _emit("success", message)


def print_warning(message: str) -> None:
    _emit("warning", message)


def print_error(message: str) -> None:
    _emit("error", message)
