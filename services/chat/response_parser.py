"""Helpers to extract data from streaming chat-completion chunks."""

from __future__ import annotations

from typing import Any, Optional, Tuple


def extract_delta(chunk: Any) -> Tuple[str, Optional[str]]:
	"""Return the content delta and finish reason of the first choice in a chunk."""
	choices = getattr(chunk, "choices", None) or []
	if not choices:
		return "", None
	choice = choices[0]
	delta = getattr(choice, "delta", None)
	content = getattr(delta, "content", None) if delta is not None else None
	return content or "", getattr(choice, "finish_reason", None)
