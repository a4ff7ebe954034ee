"""
Shared plumbing for CaseTrack services.

Each service owns a DatabaseSessionProvider and a clock. Public
operations go through _run, which turns domain errors into failed
OperationResults after the unit of work has rolled back.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional, TypeVar

from casetrack.connection import DatabaseSessionProvider
from casetrack.errors import CaseTrackError, OperationResult, ValidationError
from casetrack.models import utcnow
from casetrack.monitoring import operation_timer
from security_logger import SecurityLogger, get_security_logger

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]


class CoreService:
    """Base class for services that expose OperationResult operations."""

    def __init__(
        self,
        provider: DatabaseSessionProvider,
        clock: Clock = utcnow,
        security_log: Optional[SecurityLogger] = None
    ):
        self._provider = provider
        self._clock = clock
        self._security_log = security_log

    @property
    def security_log(self) -> SecurityLogger:
        if self._security_log is None:
            self._security_log = get_security_logger()
        return self._security_log

    def now(self) -> datetime:
        return self._clock()

    def _run(self, operation: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> OperationResult[T]:
        with operation_timer(operation):
            try:
                return OperationResult.success(func(*args, **kwargs))
            except ValidationError as e:
                self.security_log.log_validation_failure(
                    field=e.field,
                    error_code=e.kind.value,
                    input_value=e.message,
                    source=operation
                )
                return OperationResult.from_error(e)
            except CaseTrackError as e:
                logger.info(f"{operation} rejected ({e.kind.value}): {e.message}")
                return OperationResult.from_error(e)
