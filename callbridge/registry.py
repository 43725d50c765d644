"""Prompt registry: call identifier -> operator objective.

An entry is stored when an outbound call is placed, claimed once when the
call's media stream starts, and discarded when that media session ends.
Entries whose call never connects stay until the process restarts.

The registry is only touched from the event loop and every call uses its
own key, so there is no locking.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from loguru import logger


@dataclass
class CallPrompt:
    """The operator's free-text objective for one outbound call."""

    call_id: str
    prompt_text: str
    created_at: float = field(default_factory=time.time)
    consumed: bool = False


class PromptRegistry:
    """In-memory store of pending call prompts, keyed by call id."""

    def __init__(self) -> None:
        self._prompts: dict[str, CallPrompt] = {}

    def store(self, call_id: str, prompt_text: str) -> CallPrompt:
        """Insert or overwrite the prompt for ``call_id``."""
        entry = CallPrompt(call_id=call_id, prompt_text=prompt_text)
        self._prompts[call_id] = entry
        logger.info(f"Stored prompt for call {call_id}")
        return entry

    def claim(self, call_id: str) -> str | None:
        """Return the prompt for ``call_id`` and mark it consumed.

        Returns None for unknown ids and for every claim after the first.
        """
        entry = self._prompts.get(call_id)
        if entry is None or entry.consumed:
            return None
        entry.consumed = True
        return entry.prompt_text

    def discard(self, call_id: str) -> None:
        """Remove the entry for ``call_id``, if any."""
        if self._prompts.pop(call_id, None) is not None:
            logger.debug(f"Discarded prompt for call {call_id}")

    def get(self, call_id: str) -> CallPrompt | None:
        return self._prompts.get(call_id)

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._prompts

    def __len__(self) -> int:
        return len(self._prompts)
