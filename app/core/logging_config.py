"""Structured logging configuration for the application."""

from datetime import UTC, datetime
import json
import logging
import sys

from app.core.config import settings

EVENTS_LOGGER = "elections.events"


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def _resolve_level() -> int:
    if settings.LOG_LEVEL:
        return getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    if settings.ENVIRONMENT == "development":
        return logging.DEBUG
    if settings.ENVIRONMENT == "production":
        return logging.WARNING
    return logging.INFO


def setup_logging() -> None:
    """Configure application logging based on environment."""
    log_level = _resolve_level()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    # Handler stays unfiltered; levels are decided per logger
    console_handler = logging.StreamHandler(sys.stdout)

    if settings.is_production:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = StandardFormatter()

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    # Election lifecycle and ballot events are always recorded
    logging.getLogger(EVENTS_LOGGER).setLevel(min(log_level, logging.INFO))


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class ElectionEventLogger:
    """Specialized logger for election lifecycle and ballot events."""

    def __init__(self) -> None:
        self.logger = get_logger(EVENTS_LOGGER)

    def log_transition(
        self,
        election_id: int,
        election_name: str,
        action: str,
        source: str = "scheduler",
        actor_user_id: int | None = None,
        request_id: str | None = None,
    ) -> None:
        """Log an election status transition ("opened", "closed", ...)."""
        self.logger.info(
            f"Election {action}: {election_name!r} (ID: {election_id})",
            extra={
                "extra_fields": {
                    "event_type": "election_transition",
                    "election_id": election_id,
                    "election_name": election_name,
                    "action": action,
                    "source": source,
                    "actor_user_id": actor_user_id,
                    "request_id": request_id,
                }
            },
        )

    def log_vote_cast(
        self,
        election_id: int,
        race_id: int,
        vote_id: int,
        channel: str,
        request_id: str | None = None,
    ) -> None:
        """Log a recorded vote without the voter or candidate identity."""
        self.logger.info(
            f"Vote recorded in race {race_id} (election {election_id})",
            extra={
                "extra_fields": {
                    "event_type": "vote_cast",
                    "election_id": election_id,
                    "race_id": race_id,
                    "vote_id": vote_id,
                    "channel": channel,
                    "request_id": request_id,
                }
            },
        )

    def log_access_denied(
        self,
        operation: str,
        actor_user_id: int | None,
        organization_id: int | None = None,
        reason: str | None = None,
        request_id: str | None = None,
    ) -> None:
        """Log an authorization failure raised by the engine."""
        self.logger.warning(
            f"Access denied for {operation}",
            extra={
                "extra_fields": {
                    "event_type": "access_denied",
                    "operation": operation,
                    "actor_user_id": actor_user_id,
                    "organization_id": organization_id,
                    "reason": reason,
                    "request_id": request_id,
                }
            },
        )


# Global election event logger instance
election_events = ElectionEventLogger()
