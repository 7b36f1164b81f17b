import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.logging import RichHandler
from rich.theme import Theme

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Operators grep for these exact spellings
LEVEL_NAMES = {
    logging.DEBUG: "Debug",
    logging.INFO: "Info",
    logging.WARNING: "Warning",
    logging.ERROR: "Error",
    logging.CRITICAL: "Error",
}


class LevelFormatter(logging.Formatter):
    """Formats records as '[timestamp] [Level] message'."""

    def format(self, record: logging.LogRecord) -> str:
        original = record.levelname
        record.levelname = LEVEL_NAMES.get(record.levelno, original.title())
        try:
            return super().format(record)
        finally:
            record.levelname = original


sys_logger = logging.getLogger("arcboard")
sys_logger.setLevel(logging.INFO)
sys_logger.propagate = False


def configure_logging(log_file: Path, console: Optional[Console] = None) -> Path:
    """
    Points the file sink at 'log_file' (append mode, never rotated) and mirrors
    warnings and errors to the console.
    Safe to call more than once: previous handlers are closed and replaced.
    """
    for handler in list(sys_logger.handlers):
        sys_logger.removeHandler(handler)
        handler.close()

    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setFormatter(LevelFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    file_handler.setLevel(logging.INFO)
    sys_logger.addHandler(file_handler)

    console_handler = RichHandler(
        console=console or logger.console,
        show_path=False,
        show_time=False,
        markup=False,
    )
    console_handler.setLevel(logging.WARNING)
    sys_logger.addHandler(console_handler)

    return log_file


@contextmanager
def also_log_to(log_file: Path):
    """Copies records to a second file (same format) for the duration of the block."""
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    handler.setFormatter(LevelFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.setLevel(logging.INFO)
    sys_logger.addHandler(handler)
    try:
        yield log_file
    finally:
        sys_logger.removeHandler(handler)
        handler.close()


class ArcLogger:
    """Operator-facing console: one indented line per step, nested under goal/task headers."""

    STYLES = {
        "success": ("✅", "bold green"),
        "changed": ("✅", "bold green"),
        "error": ("❌", "bold red"),
        "skip": ("🔵", "bold cyan"),
        "warning": ("🔶", "bold yellow"),
        "info": ("ℹ️", "dim white"),
    }

    # TaskStatus value -> style key
    STATUS_STYLES = {
        "OK": "success",
        "CHANGED": "changed",
        "SKIPPED": "skip",
        "WARNING": "warning",
        "FAILED": "error",
    }

    def __init__(self):
        self.console = Console(theme=Theme({name: style for name, (_, style) in self.STYLES.items()}))
        self.indent_level = 0

    def log_step(self, status: str, msg: str):
        icon, _ = self.STYLES.get(status, ("•", ""))
        indent = "   " * self.indent_level
        style = status if status in self.STYLES else "info"
        self.console.print(f"{indent}{icon} [{style}]{escape(msg)}[/{style}]")

    def log_status(self, status_value: str, msg: str):
        """Same as log_step, keyed by a TaskStatus value."""
        style = self.STATUS_STYLES.get(status_value, "info")
        if style == "changed":
            msg = f"{msg} (changed)"
        self.log_step(style, msg)

    def workflow(self, name: str):
        return _Section(self, f"🚀 [bold blue]Goal: {escape(name)}[/bold blue]", spaced=True)

    def task(self, name: str):
        return _Section(self, f"🔸 [bold white]{escape(name)}[/bold white]")


class _Section:
    """Prints a header and indents everything logged inside the block."""

    def __init__(self, owner: ArcLogger, header: str, spaced: bool = False):
        self.owner = owner
        self.header = header
        self.spaced = spaced

    def __enter__(self):
        if self.spaced:
            self.owner.console.print()
        self.owner.console.print("   " * self.owner.indent_level + self.header)
        self.owner.indent_level += 1
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.owner.indent_level -= 1
        if exc_type:
            self.owner.log_step("error", f"Interrupted: {exc_value}")
        return False


logger = ArcLogger()
