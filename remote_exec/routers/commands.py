"""Remote command execution endpoint (buffered JSON or NDJSON stream)."""

from __future__ import annotations

from typing import Any, AsyncIterator

from fastapi import APIRouter, Body, Depends
from fastapi.responses import StreamingResponse

from remote_exec.auth import require_api_key
from remote_exec.dependencies import get_command_service
from remote_exec.models.execution import ExecutionResult, StreamChunk
from remote_exec.models.responses import (
    ErrorDetail,
    RunCommandResponse,
    StreamErrorLine,
)
from remote_exec.services.command_service import (
    CommandService,
    RunCommandItem,
    collect_result,
    format_result_text,
)
from remote_exec.utils.logging import get_logger

log = get_logger(__name__)

router = APIRouter(
    prefix="/commands",
    tags=["commands"],
    dependencies=[Depends(require_api_key)],
)


def _to_response(result: ExecutionResult) -> RunCommandResponse:
    return RunCommandResponse(
        **result.model_dump(),
        summary=format_result_text(result),
        is_error=result.timed_out or result.exit_code != 0,
    )


async def _ndjson(items: AsyncIterator[RunCommandItem]) -> AsyncIterator[str]:
    try:
        async for item in items:
            if isinstance(item, StreamChunk):
                yield item.model_dump_json(by_alias=True) + "\n"
            else:
                yield _to_response(item).model_dump_json(by_alias=True) + "\n"
    except Exception as exc:
        # Headers are already sent; report the failure in-band.
        log.warning("commands.stream_failed", error=str(exc))
        line = StreamErrorLine(
            error=ErrorDetail(code=getattr(exc, "code", "internal"), message=str(exc)),
        )
        yield line.model_dump_json() + "\n"


@router.post("/run", response_model=None)
async def run_command(
    payload: dict[str, Any] = Body(...),
    service: CommandService = Depends(get_command_service),
    key_checked: bool = Depends(require_api_key),
) -> RunCommandResponse | StreamingResponse:
    """Run a command on a registered host.

    With ``"stream": true`` the response is ``application/x-ndjson``: one line
    per output chunk, then the result line.
    """
    items = service.run_command(payload)
    streamed = payload.get("stream") is True
    log.info("commands.run", streamed=streamed, key_checked=key_checked)
    if streamed:
        return StreamingResponse(_ndjson(items), media_type="application/x-ndjson")

    return _to_response(await collect_result(items))
