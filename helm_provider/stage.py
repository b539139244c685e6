"""Stages of a resumable lifecycle operation.

The invoker keeps a callback context between polls of an operation. The
current stage, the time the operation started, and the release name live in
that context so that any process can pick the operation up where the last one
left off.
"""

from dataclasses import dataclass, replace
import datetime
from enum import StrEnum
import logging
from typing import Any

from .exceptions import StageTimeoutError, ValidationError

__all__ = [
    "Stage",
    "StageContext",
    "DEFAULT_TIMEOUT_MINUTES",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MINUTES = 60

STAGE_KEY = "Stage"
START_TIME_KEY = "StartTime"
NAME_KEY = "Name"


class Stage(StrEnum):
    """Position of an operation in its state machine."""

    INIT = "Init"
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETE = "Complete"
    FAILED = "Failed"

    @property
    def terminal(self) -> bool:
        return self in (Stage.COMPLETE, Stage.FAILED)


def format_time(value: datetime.datetime) -> str:
    """Format a time as RFC 3339 in UTC with second precision."""
    return value.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_time(value: str) -> datetime.datetime:
    """Parse an RFC 3339 time, treating times without an offset as UTC."""
    try:
        parsed = datetime.datetime.fromisoformat(value)
    except (TypeError, ValueError) as err:
        raise ValidationError(f"Invalid {START_TIME_KEY} '{value}': {err}") from err
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


@dataclass(frozen=True)
class StageContext:
    """The typed contents of the callback context."""

    stage: Stage = Stage.INIT
    start_time: str | None = None
    """Start of the operation, kept exactly as first recorded."""

    name: str | None = None
    """Release name chosen when the operation started."""

    @classmethod
    def from_dict(cls, context: dict[str, Any] | None) -> "StageContext":
        """Decode the callback context received from the invoker."""
        if not context:
            return cls()
        start_time = context.get(START_TIME_KEY)
        if start_time is not None:
            start_time = str(start_time)
            parse_time(start_time)
        name = context.get(NAME_KEY)
        raw_stage = context.get(STAGE_KEY)
        if raw_stage is None:
            stage = Stage.INIT
        else:
            try:
                stage = Stage(str(raw_stage))
            except ValueError as err:
                raise ValidationError(f"Unknown stage '{raw_stage}'") from err
        if stage != Stage.INIT and start_time is None:
            raise ValidationError(f"Missing {START_TIME_KEY} for stage '{stage}'")
        return cls(
            stage=stage,
            start_time=start_time,
            name=str(name) if name is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Encode as the callback context for the next poll."""
        context: dict[str, Any] = {STAGE_KEY: str(self.stage)}
        if self.start_time is not None:
            context[START_TIME_KEY] = self.start_time
        if self.name is not None:
            context[NAME_KEY] = self.name
        return context

    def advance(self, stage: Stage, now: datetime.datetime) -> "StageContext":
        """Move to the next stage, recording the start time if not yet set."""
        return replace(
            self,
            stage=stage,
            start_time=self.start_time or format_time(now),
        )

    def check_timeout(
        self, timeout_minutes: int | None, now: datetime.datetime
    ) -> None:
        """Raise StageTimeoutError if the operation has run for too long."""
        if self.start_time is None:
            if self.stage == Stage.INIT:
                return
            raise ValidationError(f"Missing {START_TIME_KEY} for stage '{self.stage}'")
        if timeout_minutes is None:
            timeout_minutes = DEFAULT_TIMEOUT_MINUTES
        timeout = datetime.timedelta(minutes=timeout_minutes).total_seconds()
        elapsed = (now - parse_time(self.start_time)).total_seconds()
        _LOGGER.info("Elapsed Time : %.0f sec, Timeout: %.0f sec", elapsed, timeout)
        if elapsed >= timeout:
            raise StageTimeoutError(elapsed, timeout)
