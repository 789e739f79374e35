"""Structured audit events for command executions.

Every event carries the invocation id, host alias and command so start,
chunk, result and error lines of one run can be joined. The destination is
chosen when the logger is built: a file path (appended to) or stdout.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from typing import IO, Any, Optional

import structlog

from remote_exec.models.execution import (
    ExecutionContext,
    ExecutionResult,
    InvocationMetadata,
    StreamChunk,
    utcnow,
)


def _duration_ms(started_at: datetime, finished_at: datetime) -> int:
    return int((finished_at - started_at).total_seconds() * 1000)


class TelemetryLogger:
    def __init__(
        self,
        destination: Optional[str] = None,
        level: str = "info",
        *,
        stream: Optional[IO[str]] = None,
    ) -> None:
        self._file: Optional[IO[str]] = None
        if stream is not None:
            out = stream
        elif destination:
            self._file = open(destination, "a", encoding="utf-8", buffering=1)
            out = self._file
        else:
            out = sys.stdout

        numeric = logging.getLevelName(level.upper())
        self._logger = structlog.wrap_logger(
            structlog.WriteLogger(file=out),
            processors=[
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(
                numeric if isinstance(numeric, int) else logging.INFO,
            ),
            logger_name="remote-exec",
        )

    def _base(
        self, context: ExecutionContext, metadata: InvocationMetadata,
    ) -> dict[str, Any]:
        return {
            "invocation_id": metadata.invocation_id,
            "host_alias": context.host.alias,
            "command": context.command,
        }

    def log_command_start(
        self, context: ExecutionContext, metadata: InvocationMetadata,
    ) -> None:
        self._logger.info(
            "command.start",
            **self._base(context, metadata),
            started_at=metadata.started_at.isoformat(),
            timeout_ms=context.options.timeout_ms,
        )

    def log_command_chunk(
        self,
        context: ExecutionContext,
        metadata: InvocationMetadata,
        chunk: StreamChunk,
    ) -> None:
        self._logger.debug(
            "command.chunk",
            **self._base(context, metadata),
            chunk_type=chunk.type,
            data=chunk.data,
            received_at=chunk.received_at.isoformat(),
        )

    def log_command_result(
        self,
        context: ExecutionContext,
        metadata: InvocationMetadata,
        result: ExecutionResult,
    ) -> None:
        finished_at = utcnow()
        self._logger.info(
            "command.result",
            **self._base(context, metadata),
            finished_at=finished_at.isoformat(),
            duration_ms=_duration_ms(metadata.started_at, finished_at),
            exit_code=result.exit_code,
            timed_out=result.timed_out,
            stdout_chars=len(result.stdout),
            stderr_chars=len(result.stderr),
        )

    def log_command_error(
        self,
        context: ExecutionContext,
        metadata: InvocationMetadata,
        error: BaseException,
    ) -> None:
        finished_at = utcnow()
        self._logger.error(
            "command.error",
            **self._base(context, metadata),
            finished_at=finished_at.isoformat(),
            duration_ms=_duration_ms(metadata.started_at, finished_at),
            error_type=type(error).__name__,
            error_code=getattr(error, "code", None),
            error_message=str(error),
        )

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
