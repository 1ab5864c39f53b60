"""Process-wide relay configuration read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from services.chat.prompts import DEFAULT_SYSTEM_PROMPT

DEFAULT_BASE_URL = "https://api.together.xyz/v1"
DEFAULT_MODEL = "deepseek-ai/DeepSeek-R1-Distill-Llama-70B-free"
DEFAULT_TIMEOUT_SECONDS = 55.0


@dataclass(frozen=True)
class RelaySettings:
    """Read-only configuration shared by every relay request.

    Attributes:
        api_key: Credential for the upstream completion service, or None when unset.
        base_url: OpenAI-compatible endpoint of the upstream service.
        model: Model identifier sent with each completion request.
        system_prompt: Instruction injected as the first upstream message.
        timeout_seconds: Deadline for one relay invocation, streaming included.
    """

    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> "RelaySettings":
        """Build settings from environment variables.

        Raises:
            RuntimeError: If UPSTREAM_TIMEOUT_SECONDS is not a positive number.
        """
        raw_timeout = os.getenv("UPSTREAM_TIMEOUT_SECONDS")
        timeout_seconds = DEFAULT_TIMEOUT_SECONDS
        if raw_timeout is not None and raw_timeout.strip():
            try:
                timeout_seconds = float(raw_timeout)
            except ValueError as exc:
                raise RuntimeError(
                    f"UPSTREAM_TIMEOUT_SECONDS={raw_timeout!r} is not a number."
                ) from exc
            if timeout_seconds <= 0:
                raise RuntimeError("UPSTREAM_TIMEOUT_SECONDS must be greater than zero.")

        api_key = (os.getenv("TOGETHER_API_KEY") or "").strip() or None
        return cls(
            api_key=api_key,
            base_url=os.getenv("UPSTREAM_BASE_URL") or DEFAULT_BASE_URL,
            model=os.getenv("CHAT_MODEL") or DEFAULT_MODEL,
            system_prompt=os.getenv("CHAT_SYSTEM_PROMPT") or DEFAULT_SYSTEM_PROMPT,
            timeout_seconds=timeout_seconds,
        )
