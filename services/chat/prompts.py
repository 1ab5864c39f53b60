"""Prompt text for the chat relay."""

from __future__ import annotations

DEFAULT_SYSTEM_PROMPT = (
    "You are Neurox, a helpful and friendly AI assistant. Provide concise and accurate answers. "
    "If an image is mentioned, acknowledge it appropriately based on the context provided by its name."
)


def attachment_acknowledgement(file_name: str, mime_type: str, role: str = "user") -> str:
    """Return the line telling the model which file the turn's author attached."""
    if mime_type.startswith("image/"):
        attached = f'an image: "{file_name}"'
    else:
        attached = f'a file: "{file_name}" ({mime_type})'
    return f"[{role.capitalize()} has attached {attached}. Please acknowledge this attachment.]"


def with_acknowledgement(text: str, acknowledgement: str) -> str:
    """Append an attachment acknowledgement to the turn's own text."""
    return f"{(text or '').strip()} {acknowledgement.strip()}".strip()
