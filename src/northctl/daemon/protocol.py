"""Daemon control-socket messages.

One JSON document per line in each direction:

    -> {"method": "run", "args": ["--oneline", "--", "ls-list"]}
    <- {"result": "...", "error": null}

    -> {"method": "exit"}
    <- {"result": "", "error": null}
"""
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from ..engine.errors import DaemonError


class RunRequest(BaseModel):
    """Run a full command line (options, then commands) in the daemon."""
    method: Literal["run"] = "run"
    args: list[str] = Field(default_factory=list)


class ExitRequest(BaseModel):
    """Shut the daemon down."""
    method: Literal["exit"] = "exit"


class DaemonResponse(BaseModel):
    result: Optional[str] = None
    error: Optional[str] = None


DaemonRequest = Annotated[Union[RunRequest, ExitRequest], Field(discriminator="method")]
_request_adapter: TypeAdapter = TypeAdapter(DaemonRequest)


def encode(message: BaseModel) -> bytes:
    return message.model_dump_json().encode("utf-8") + b"\n"


def decode_request(line: bytes) -> Union[RunRequest, ExitRequest]:
    """Parse one request line.

    Raises:
        DaemonError: malformed request
    """
    try:
        return _request_adapter.validate_json(line)
    except ValidationError as e:
        raise DaemonError(f"invalid request: {e.errors()[0]['msg']}")


def decode_response(line: bytes) -> DaemonResponse:
    if not line:
        raise DaemonError("connection closed by daemon")
    try:
        return DaemonResponse.model_validate_json(line)
    except ValidationError as e:
        raise DaemonError(f"invalid response: {e.errors()[0]['msg']}")
