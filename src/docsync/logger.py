import json
import logging
import os
import sys

DEFAULT_LOG_FILE = "/tmp/docsync.log"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """Single-line JSON formatter for structured debug output.

    Produces one JSON object per log record with fields: ts, level, logger, msg.
    Exception info is included as an "exc" field when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _formatter(debug_format: str, pattern: str) -> logging.Formatter:
    if debug_format == "json":
        return JsonFormatter(datefmt=_DATEFMT)
    return logging.Formatter(pattern, datefmt=_DATEFMT)


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str = "text",
) -> None:
    """
    Configure logging based on execution mode.

    Args:
        mode: "service" for file logging (embedded in a host process),
            "cli" for stderr logging.
        debug: If True, overrides LOG_LEVEL to DEBUG.
        log_file: Custom log file path (overrides DOCSYNC_LOG_FILE env var).
        debug_format: "text" (default) or "json" for structured output.

    Environment variables:
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR).
                   Default: WARNING for service mode, INFO for CLI mode.
        DOCSYNC_LOG_FILE: Custom log file path for service mode.
                  Default: /tmp/docsync.log
    """
    default_level = "WARNING" if mode == "service" else "INFO"
    env_level = os.getenv("LOG_LEVEL", default_level).upper()

    if debug:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, env_level, logging.INFO)

    handlers: list[logging.Handler] = []
    if mode == "service":
        # Service mode: the host owns stdout/stderr, log to a file only
        # Priority: log_file param > DOCSYNC_LOG_FILE env var > default
        final_log_file = log_file or os.getenv(
            "DOCSYNC_LOG_FILE", DEFAULT_LOG_FILE
        )
        file_handler = logging.FileHandler(final_log_file, mode="a")
        file_handler.setFormatter(
            _formatter(
                debug_format, "[%(asctime)s] [%(levelname)s] %(message)s"
            )
        )
        handlers.append(file_handler)
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            _formatter(
                debug_format, "[%(asctime)s] [%(levelname)s] %(message)s"
            )
        )
        handlers.append(stderr_handler)

        # Optional extra copy on disk (e.g. --debug myfile.log)
        if log_file:
            file_handler = logging.FileHandler(log_file, mode="a")
            file_handler.setFormatter(
                _formatter(
                    debug_format,
                    "[%(asctime)s] [%(levelname)s] %(name)s %(message)s",
                )
            )
            handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers)

    # The polling watcher is chatty at DEBUG
    if log_level != logging.DEBUG:
        logging.getLogger("docsync.sync.watcher").setLevel(logging.INFO)
