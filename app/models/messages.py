"""Wire messages exchanged over the log streaming channel.

Client frames are ``subscribe`` and ``unsubscribe``. The server sends ``log``
frames for build output; every other server frame type (acknowledgements,
status changes, errors, heartbeats) may be ignored by clients.
"""

import json
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import ProtocolError

TRUNCATION_TEMPLATE = "[log truncated: {count} lines dropped]"


class _Frame(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class SubscribeMessage(_Frame):
    type: Literal["subscribe"]
    deployment_id: str = Field(..., alias="deploymentId", min_length=1)


class UnsubscribeMessage(_Frame):
    type: Literal["unsubscribe"]
    deployment_id: str = Field(..., alias="deploymentId", min_length=1)


ClientMessage = Annotated[
    SubscribeMessage | UnsubscribeMessage, Field(discriminator="type")
]

_client_adapter: TypeAdapter[SubscribeMessage | UnsubscribeMessage] = TypeAdapter(
    ClientMessage
)


class LogMessage(_Frame):
    type: Literal["log"] = "log"
    deployment_id: str = Field(..., alias="deploymentId")
    message: str
    truncated: bool | None = None

    @classmethod
    def truncation_marker(cls, deployment_id: str, dropped: int) -> "LogMessage":
        return cls(
            deployment_id=deployment_id,
            message=TRUNCATION_TEMPLATE.format(count=dropped),
            truncated=True,
        )


class StatusMessage(_Frame):
    type: Literal["status"] = "status"
    deployment_id: str = Field(..., alias="deploymentId")
    status: str


class AckMessage(_Frame):
    type: Literal["subscribed", "unsubscribed"]
    deployment_id: str = Field(..., alias="deploymentId")


class ErrorMessage(_Frame):
    type: Literal["error"] = "error"
    code: str = "PROTOCOL_ERROR"
    message: str


class PingMessage(_Frame):
    type: Literal["ping"] = "ping"


ServerMessage = LogMessage | StatusMessage | AckMessage | ErrorMessage | PingMessage


def parse_client_message(raw: str | bytes | dict[str, Any]) -> SubscribeMessage | UnsubscribeMessage:
    """Parse one client frame.

    Raises:
        ProtocolError: The frame is not JSON, has an unknown ``type`` or
            lacks a deployment id.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Invalid JSON: {e.msg}") from e

    if not isinstance(raw, dict):
        raise ProtocolError("Message must be a JSON object")

    try:
        return _client_adapter.validate_python(raw)
    except PydanticValidationError as e:
        errors = [
            {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        raise ProtocolError(
            f"Invalid message: {errors[0]['loc'] or 'type'}: {errors[0]['msg']}",
            {"errors": errors},
        ) from e
