"""Chat relay domain models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

Role = Literal["system", "user", "assistant"]


class Attachment(BaseModel):
    """A file inlined by the browser client as a data URL.

    Accepts both the documented shape (`dataUrl`, `fileName`, `mimeType`) and
    the legacy client shape (`fileDataUrl`, `fileName`, `fileType`).
    """

    model_config = ConfigDict(frozen=True)

    data_url: str = Field("", validation_alias=AliasChoices("dataUrl", "fileDataUrl", "data_url"))
    file_name: str = Field("", validation_alias=AliasChoices("fileName", "file_name"))
    mime_type: Optional[str] = Field(None, validation_alias=AliasChoices("mimeType", "fileType", "mime_type"))


class ClientMessage(BaseModel):
    """One conversational turn as submitted by the caller."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str = ""
    attachment: Optional[Attachment] = Field(None, validation_alias=AliasChoices("attachment", "data"))

    @field_validator("content", mode="before")
    @classmethod
    def _null_content_is_empty(cls, value):
        return "" if value is None else value

    @property
    def has_attachment(self) -> bool:
        return self.attachment is not None and bool(self.attachment.data_url)

    @property
    def is_empty(self) -> bool:
        return not self.content and not self.has_attachment


class RelayRequest(BaseModel):
    """Validated envelope of one relay invocation."""

    messages: List[ClientMessage]


@dataclass(frozen=True)
class UpstreamMessage:
    """A message in the upstream chat-completions schema."""

    role: str
    content: str

    def as_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class RelayOutcome(str, Enum):
    """Terminal state of one relay invocation."""

    COMPLETED = "completed"
    UPSTREAM_ERROR = "upstream_error"
    TIMED_OUT = "timed_out"
    CLIENT_CANCELLED = "client_cancelled"
    FAILED = "failed"
