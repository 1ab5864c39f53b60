"""Convert client chat turns into the upstream chat-completions message list.

The upstream model is text-only, so attachments are never forwarded: each one
is folded into the turn's text as an acknowledgement line naming the file.
Content is first classified into one of the variants below and then rendered
to the upstream string. `MultimodalImage` is the slot for forwarding image
bytes to a vision-capable model; it currently renders to an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from models.chat_models import ClientMessage, UpstreamMessage
from services.chat.errors import ChatValidationError, UnsupportedContentError
from services.chat.prompts import attachment_acknowledgement, with_acknowledgement
from utils.media_validation import is_image_mime, resolve_mime_type

EMPTY_MESSAGES_DETAIL = "Invalid request body: 'messages' array is required and cannot be empty."
UNNAMED_ATTACHMENT = "unnamed file"


@dataclass(frozen=True)
class TextOnly:
    text: str

    def render(self) -> str:
        return self.text


@dataclass(frozen=True)
class _Acknowledged:
    text: str
    role: str
    file_name: str
    mime_type: str

    def render(self) -> str:
        return with_acknowledgement(
            self.text, attachment_acknowledgement(self.file_name, self.mime_type, self.role)
        )


class ImageAcknowledged(_Acknowledged):
    pass


class FileAcknowledged(_Acknowledged):
    pass


@dataclass(frozen=True)
class MultimodalImage:
    """Text plus inline image data for a vision-capable upstream model."""

    text: str
    data_url: str

    def render(self) -> str:
        raise UnsupportedContentError("Multimodal image content is not supported by the configured model.")


MessageContent = Union[TextOnly, ImageAcknowledged, FileAcknowledged, MultimodalImage]


def classify_content(message: ClientMessage) -> MessageContent:
    """Pick the content variant for a single client message."""
    if not message.has_attachment:
        return TextOnly(message.content)

    attachment = message.attachment
    file_name = attachment.file_name.strip() or UNNAMED_ATTACHMENT
    mime_type = resolve_mime_type(attachment.mime_type, attachment.data_url)
    if is_image_mime(mime_type):
        return ImageAcknowledged(message.content, message.role, file_name, mime_type)
    return FileAcknowledged(message.content, message.role, file_name, mime_type)


def normalize_messages(
    messages: Optional[Sequence[ClientMessage]], system_prompt: str
) -> List[UpstreamMessage]:
    """Build the upstream message list for one relay request.

    Args:
        messages: Client turns in conversational order.
        system_prompt: Instruction placed at position 0.

    Returns:
        The system instruction followed by every non-empty client turn, in order.

    Raises:
        ChatValidationError: If `messages` is empty or absent.
    """
    if not messages:
        raise ChatValidationError(EMPTY_MESSAGES_DETAIL)

    prepared: List[UpstreamMessage] = [UpstreamMessage(role="system", content=system_prompt)]
    for message in messages:
        if message.is_empty:
            continue
        content = classify_content(message)
        if not isinstance(content, TextOnly):
            logging.info(
                "%s message includes file: %s (Type: %s)",
                message.role.capitalize(),
                content.file_name,
                content.mime_type,
            )
        prepared.append(UpstreamMessage(role=message.role, content=content.render()))
    return prepared
