"""
Job-scoped structured logging.

Every event is appended to the job's log stream in the store and mirrored to
the standard ``logging`` hierarchy for console visibility.
"""

import logging
from typing import Any, Dict, Optional

from .errors import PersistenceError
from .models import JobLogEntry, LogLevel
from .store import ArticleStore


logger = logging.getLogger(__name__)

_PY_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class JobLogger:
    """Writes ``JobLogEntry`` rows for one job."""

    def __init__(self, store: ArticleStore, job_id: str):
        self.store = store
        self.job_id = job_id

    async def emit(
        self,
        level: LogLevel,
        event_type: str,
        event_name: str,
        message: str,
        source: Optional[str] = None,
        **data: Any,
    ) -> JobLogEntry:
        payload: Dict[str, Any] = {"event_type": event_type, "event_name": event_name, **data}
        entry = JobLogEntry(
            job_id=self.job_id,
            source_name=source,
            level=level,
            message=message,
            additional_data=payload,
        )

        prefix = f"[job {self.job_id[:8]}]" + (f" [{source}]" if source else "")
        logger.log(_PY_LEVELS[level], f"{prefix} {message}")

        try:
            await self.store.append_log(entry)
        except PersistenceError as e:
            # A lost log line must not abort the pipeline that produced it.
            logger.error(f"{prefix} Failed to persist log event {event_name}: {e}")
        return entry

    async def info(self, event_type: str, event_name: str, message: str, **kwargs: Any) -> JobLogEntry:
        return await self.emit(LogLevel.INFO, event_type, event_name, message, **kwargs)

    async def warning(self, event_type: str, event_name: str, message: str, **kwargs: Any) -> JobLogEntry:
        return await self.emit(LogLevel.WARNING, event_type, event_name, message, **kwargs)

    async def error(self, event_type: str, event_name: str, message: str, **kwargs: Any) -> JobLogEntry:
        return await self.emit(LogLevel.ERROR, event_type, event_name, message, **kwargs)
