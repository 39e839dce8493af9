"""Request bodies accepted by the JSON endpoints."""

from typing import Any, Optional

from pydantic import BaseModel, field_validator


class MetaItemIn(BaseModel):
    title: str = ""
    description: str = ""


def _scalar_to_str(value: Any) -> Any:
    # numbers and booleans from loose clients become text; lists/objects still fail
    if isinstance(value, (bool, int, float)):
        return str(value)
    return value


class ChatSendIn(BaseModel):
    type: str = "text"
    author: Optional[str] = None
    text: Optional[str] = None
    url: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _default_type(cls, value: Any) -> Any:
        if value is None or value == "":
            return "text"
        return _scalar_to_str(value)

    @field_validator("author", "text", "url", mode="before")
    @classmethod
    def _coerce_scalars(cls, value: Any) -> Any:
        return _scalar_to_str(value)
