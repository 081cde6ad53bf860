"""Logging setup for the command line."""

import logging
import os
from pathlib import Path

import coloredlogs

#: Log line format. Thread names tell parallel transfers apart.
LOG_FORMAT = "%(asctime)s %(name)-32s [%(threadName)s] %(levelname)s %(message)s"

#: Timestamp format
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

#: Libraries that log every RPC call at DEBUG or INFO
NOISY_LOGGERS = (
    "web3.providers.HTTPProvider",
    "web3.RequestManager",
    "urllib3.connectionpool",
    "httpx",
    "httpcore",
)


class ThreadColourFormatter(logging.Formatter):
    """Give each thread name its own ANSI colour.

    Wraps the formatter ``coloredlogs`` installed and recolours only the
    thread name, so interleaved output from parallel transfers stays readable.
    Colours are assigned on first sight and cycle through the palette.
    """

    _PALETTE = [
        "\033[1;36m",
        "\033[1;33m",
        "\033[1;35m",
        "\033[1;32m",
        "\033[1;34m",
        "\033[1;91m",
    ]
    _RESET = "\033[0m"

    def __init__(self, inner: logging.Formatter):
        super().__init__()
        self._inner = inner
        self._thread_colours: dict[str, str] = {}

    def _colour_for(self, thread_name: str) -> str:
        if thread_name not in self._thread_colours:
            self._thread_colours[thread_name] = self._PALETTE[len(self._thread_colours) % len(self._PALETTE)]
        return self._thread_colours[thread_name]

    def format(self, record: logging.LogRecord) -> str:
        formatted = self._inner.format(record)
        thread_name = record.threadName
        return formatted.replace(f"[{thread_name}]", f"[{self._colour_for(thread_name)}{thread_name}{self._RESET}]", 1)


def setup_console_logging(
    default_log_level="info",
    log_file: Path | None = None,
    coloured_threads=False,
) -> logging.Logger:
    """Set up coloured log output.

    - ``LOG_LEVEL`` environment variable overrides ``default_log_level``
    - Tunes down RPC client libraries that log every request

    :param log_file:
        Also write the log to this file, always at least at INFO level
        and without colours.

    :param coloured_threads:
        Colour thread names, for parallel transfers.

    :return:
        Root logger
    """
    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = getattr(logging, level, None)
    assert isinstance(numeric_level, int), f"Unknown log level: {level}"

    coloredlogs.install(level=numeric_level, fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    root = logging.getLogger()

    if coloured_threads:
        for handler in root.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
                handler.setFormatter(ThreadColourFormatter(handler.formatter))

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_level = min(logging.INFO, numeric_level)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
        root.addHandler(file_handler)
        root.setLevel(min(root.level, file_level))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root
