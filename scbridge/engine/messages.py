from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import MalformedClientMessage

# ---------- Bridge -> client ----------
class PostMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["post"] = "post"
    text: str


class StatusMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["status"] = "status"
    connected: bool


OutputMessage = Union[PostMessage, StatusMessage]

# ---------- Client -> bridge ----------
class EvalMessage(BaseModel):
    type: Literal["eval"]
    code: str


class StopMessage(BaseModel):
    type: Literal["stop"]


ClientMessage = Annotated[Union[EvalMessage, StopMessage], Field(discriminator="type")]

_client_adapter = TypeAdapter(ClientMessage)


def parse_client_message(raw: str | bytes) -> EvalMessage | StopMessage:
    """
    Parse one inbound WebSocket frame.

    Raises MalformedClientMessage for invalid JSON, an unknown ``type`` or
    missing fields; the caller logs and drops the frame.
    """
    try:
        return _client_adapter.validate_json(raw)
    except ValidationError as e:
        raise MalformedClientMessage(str(e)) from e
