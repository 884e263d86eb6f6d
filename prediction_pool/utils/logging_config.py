"""
Logging configuration for the prediction pool

Console output plus rotating files: the application log, an error log, and a
reconciliation log that keeps the trail of every scoring, delete and
recompute pass.
"""

import logging
import logging.handlers
import os

from flask import has_request_context, request

RECONCILIATION_LOGGERS = (
    "prediction_pool.services.reconciliation",
    "prediction_pool.services.recompute",
    "prediction_pool.services.scheduler_service",
)


class RequestContextFilter(logging.Filter):
    """Add the request line and the season being addressed to log records"""

    def filter(self, record):
        if has_request_context():
            record.method = request.method
            record.url = request.path
            record.season = (request.view_args or {}).get("season_id", "-")
        else:
            record.method = "-"
            record.url = "-"
            record.season = "-"
        return True


class ColoredFormatter(logging.Formatter):
    """Level names in color for development consoles"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelname)
        if color:
            record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def _rotating_file_handler(path, level, fmt, max_mb, backups):
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_mb * 1024 * 1024, backupCount=backups
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt="%Y-%m-%d %H:%M:%S"))
    handler.addFilter(RequestContextFilter())
    return handler


def setup_logging(app):
    """
    Setup logging for the Flask application

    Args:
        app: Flask application instance
    """
    log_level = getattr(logging, app.config.get("LOG_LEVEL", "INFO").upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if app.config.get("LOG_TO_CONSOLE", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        if app.debug:
            console_handler.setFormatter(
                ColoredFormatter(
                    "%(asctime)s [%(levelname)s] %(name)s: %(message)s "
                    "[%(filename)s:%(lineno)d]",
                    datefmt="%H:%M:%S",
                )
            )
        else:
            console_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
        console_handler.addFilter(RequestContextFilter())
        root_logger.addHandler(console_handler)

    if app.config.get("LOG_TO_FILE", True):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)

        root_logger.addHandler(
            _rotating_file_handler(
                os.path.join(log_dir, "prediction_pool.log"),
                log_level,
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s "
                "[%(method)s %(url)s] [season=%(season)s]",
                max_mb=10,
                backups=5,
            )
        )
        root_logger.addHandler(
            _rotating_file_handler(
                os.path.join(log_dir, "errors.log"),
                logging.ERROR,
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s "
                "[%(pathname)s:%(lineno)d] [%(method)s %(url)s]",
                max_mb=5,
                backups=3,
            )
        )

        # Scoring history is kept longer than the general log
        reconciliation_handler = _rotating_file_handler(
            os.path.join(log_dir, "reconciliation.log"),
            logging.INFO,
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            max_mb=5,
            backups=10,
        )
        for name in RECONCILIATION_LOGGERS:
            logging.getLogger(name).addHandler(reconciliation_handler)

    for noisy in ("werkzeug", "flask_limiter", "apscheduler"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.info(f"Logging configured - Level: {logging.getLevelName(log_level)}")


class ContextualLogger:
    """
    Logger that appends key=value context, e.g. season and round, to every message

    bind() returns a new logger with extra context; the original is unchanged.
    """

    def __init__(self, name, context=None):
        self.logger = logging.getLogger(name)
        self.context = context or {}

    def bind(self, **context):
        merged = dict(self.context)
        merged.update(context)
        return ContextualLogger(self.logger.name, merged)

    def _format_message(self, message):
        if not self.context:
            return message
        context_str = " ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{message} [{context_str}]"

    def debug(self, message, **kwargs):
        self.logger.debug(self._format_message(message), **kwargs)

    def info(self, message, **kwargs):
        self.logger.info(self._format_message(message), **kwargs)

    def warning(self, message, **kwargs):
        self.logger.warning(self._format_message(message), **kwargs)

    def error(self, message, **kwargs):
        self.logger.error(self._format_message(message), **kwargs)

    def exception(self, message, **kwargs):
        self.logger.exception(self._format_message(message), **kwargs)
