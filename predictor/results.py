"""Typed outcomes returned by request handlers, and the JSON boundary around them."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from fastapi import Request
from fastapi.responses import JSONResponse


class FailureKind(Enum):
    UNAUTHORIZED = 401
    BAD_REQUEST = 400
    FORBIDDEN = 403
    NOT_FOUND = 404
    TOO_MANY_REQUESTS = 429
    INTERNAL = 500


@dataclass(frozen=True)
class Ok:
    payload: Any = field(default_factory=dict)
    status: int = 200


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str

    @property
    def status(self) -> int:
        return self.kind.value


Result = Union[Ok, Failure]


def unauthorized() -> Failure:
    return Failure(FailureKind.UNAUTHORIZED, "Unauthorized")


def bad_request(message: str) -> Failure:
    return Failure(FailureKind.BAD_REQUEST, message)


def internal_error(message: str) -> Failure:
    return Failure(FailureKind.INTERNAL, message)


def to_response(result: Result) -> JSONResponse:
    """Translate a handler result into the JSON response sent to the client."""
    if isinstance(result, Failure):
        return JSONResponse({"error": result.message}, status_code=result.status)
    return JSONResponse(result.payload, status_code=result.status)


async def read_json(request: Request) -> dict[str, Any] | None:
    """Return the JSON object body, or None when it is missing or malformed."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None
