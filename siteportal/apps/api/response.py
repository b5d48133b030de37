from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel


T = TypeVar("T")


class DataEnvelope(BaseModel, Generic[T]):
    # Wrap successful payloads so clients can rely on a stable top-level key.
    data: T


class MessageEnvelope(BaseModel):
    message: str


class ErrorEnvelope(BaseModel):
    error: str


def success_response(data: Any) -> dict[str, Any]:
    return {"data": data}


def message_response(message: str, **extra: Any) -> dict[str, Any]:
    return {"message": message, **extra}


def error_response(message: str) -> dict[str, str]:
    return {"error": message}
