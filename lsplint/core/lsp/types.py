from __future__ import annotations

from enum import IntEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

# Type aliases for LSP protocol payloads
LSPParams = dict[str, Any] | list[Any] | None
RequestId = int | str


class Position(BaseModel):
    model_config = ConfigDict(frozen=True)

    line: int = Field(ge=0)
    character: int = Field(ge=0)


class Range(BaseModel):
    """Zero-based, end-exclusive text range, exactly as the protocol sends it."""

    model_config = ConfigDict(frozen=True)

    start: Position
    end: Position


class DiagnosticSeverity(IntEnum):
    ERROR = 1
    WARNING = 2
    INFORMATION = 3
    HINT = 4


class Diagnostic(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    range: Range
    message: str
    # Carried through for display only: every diagnostic fails the document.
    # Servers may send values outside 1-4, so any integer is accepted.
    severity: int | None = None
    code: int | str | None = None
    source: str | None = None

    @property
    def level(self) -> DiagnosticSeverity | None:
        if self.severity is None:
            return None
        try:
            return DiagnosticSeverity(self.severity)
        except ValueError:
            return None


class Document(BaseModel):
    model_config = ConfigDict(frozen=True)

    uri: str
    text: str
    version: int = Field(default=1, ge=1)
    language_id: str = "json"

    def to_text_document_item(self) -> dict[str, Any]:
        return {
            "uri": self.uri,
            "languageId": self.language_id,
            "version": self.version,
            "text": self.text,
        }


class LintResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    uri: str
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    error: str | None = None

    @property
    def passed(self) -> bool:
        return not self.diagnostics and self.error is None


class ErrorCodes(IntEnum):
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    SERVER_NOT_INITIALIZED = -32002
    REQUEST_CANCELLED = -32800


class _JSONRPCMessage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    jsonrpc: Literal["2.0"] = "2.0"


class RequestMessage(_JSONRPCMessage):
    id: RequestId
    method: str
    params: LSPParams = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "jsonrpc": self.jsonrpc,
            "id": self.id,
            "method": self.method,
        }
        if self.params is not None:
            payload["params"] = self.params
        return payload


class NotificationMessage(_JSONRPCMessage):
    method: str
    params: LSPParams = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"jsonrpc": self.jsonrpc, "method": self.method}
        if self.params is not None:
            payload["params"] = self.params
        return payload


class SuccessResponse(_JSONRPCMessage):
    id: RequestId | None
    result: Any = None

    def to_payload(self) -> dict[str, Any]:
        return {"jsonrpc": self.jsonrpc, "id": self.id, "result": self.result}


class ResponseError(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: int
    message: str
    data: Any = None


class ErrorResponse(_JSONRPCMessage):
    id: RequestId | None
    error: ResponseError

    def to_payload(self) -> dict[str, Any]:
        error = self.error.model_dump(exclude_none=True)
        return {"jsonrpc": self.jsonrpc, "id": self.id, "error": error}


JSONRPCMessage = RequestMessage | NotificationMessage | SuccessResponse | ErrorResponse


class InvalidMessageError(ValueError):
    pass


def parse_message(value: Any) -> JSONRPCMessage:
    """Validate a decoded JSON value into one of the JSON-RPC message variants.

    Raises:
        InvalidMessageError: if the value is not a JSON-RPC 2.0 message.
    """
    if not isinstance(value, dict):
        raise InvalidMessageError(f"Expected a JSON object, got {type(value).__name__}")

    model: type[_JSONRPCMessage]
    if "method" in value:
        model = RequestMessage if "id" in value else NotificationMessage
    elif "error" in value:
        model = ErrorResponse
    elif "id" in value:
        model = SuccessResponse
    else:
        raise InvalidMessageError("Message has neither 'method' nor 'id'")

    try:
        return model.model_validate(value)  # type: ignore[return-value]
    except ValidationError as e:
        raise InvalidMessageError(f"Invalid {model.__name__}: {e}") from e
