"""Shared request validation helpers for task-market routers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, TypeVar, cast

from task_market_service.core.exceptions import ValidationError

if TYPE_CHECKING:
    from fastapi import Request

T = TypeVar("T")


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising INVALID_JSON on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("INVALID_JSON", "Request body is not valid JSON") from exc

    if not isinstance(data, dict):
        raise ValidationError("INVALID_JSON", "Request body must be a JSON object")

    return data


def extract_token(data: dict[str, Any], field_name: str) -> str:
    """Extract and validate a token field from parsed JSON body."""
    if field_name not in data:
        raise ValidationError("INVALID_JWS", f"Missing required field: {field_name}")

    value = data[field_name]

    if value is None:
        raise ValidationError("INVALID_JWS", f"Field '{field_name}' must not be null")

    if not isinstance(value, str):
        raise ValidationError("INVALID_JWS", f"Field '{field_name}' must be a string")

    if not value:
        raise ValidationError("INVALID_JWS", f"Field '{field_name}' must not be empty")

    return value


async def read_body_token(request: Request) -> str:
    """Parse the JSON body of a mutating request and return its `token`."""
    body = await request.body()
    data = {} if body == b"" else parse_json_body(body)
    return extract_token(data, "token")


def extract_bearer_token(authorization: str | None, *, required: bool) -> str | None:
    """Extract JWS token from Authorization header."""
    if authorization is None:
        if required:
            raise ValidationError("INVALID_JWS", "Missing Authorization header")
        return None

    if not authorization.startswith("Bearer "):
        raise ValidationError("INVALID_JWS", "Authorization header must use Bearer scheme")

    token = authorization[len("Bearer ") :]
    if not token:
        raise ValidationError("INVALID_JWS", "Bearer token must not be empty")

    return token


def require_bearer_token(request: Request) -> str:
    """Bearer token of a read request that needs an authenticated viewer."""
    return cast("str", extract_bearer_token(request.headers.get("authorization"), required=True))


def require_component(component: T | None, name: str) -> T:
    """Return an initialized service component from app state."""
    if component is None:
        msg = f"{name} not initialized"
        raise RuntimeError(msg)
    return component
