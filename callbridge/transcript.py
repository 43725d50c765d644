"""Conversation transcript for a single call.

Assistant text arrives as small deltas. It is buffered and only committed
to the log once a sentence is complete, so the log reflects what was
actually said, in order, and the end-of-call marker can be removed before
anything is logged. Caller text arrives as whole utterances and is
committed as-is.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal

from loguru import logger

# Terminal punctuation followed by whitespace or the end of the buffer
SENTENCE_BOUNDARY = re.compile(r"[.!?](?=\s|$)")


@dataclass
class Turn:
    """One committed utterance."""

    role: Literal["user", "assistant"]
    text: str


@dataclass
class Transcript:
    """Ordered conversation log plus the pending assistant buffer.

    Args:
        end_call_marker: In-band token the assistant emits to end the call.
            An empty marker disables end-of-call detection.
    """

    end_call_marker: str = "[END_CALL]"
    turns: list[Turn] = field(default_factory=list)
    pending: str = ""
    end_requested: bool = False

    def add_assistant_delta(self, delta: str) -> bool:
        """Append an assistant transcript fragment.

        Returns True exactly once: on the delta that completes the first
        end-of-call marker in the buffer.
        """
        if not delta:
            return False
        self.pending += delta

        newly_requested = False
        if self.end_call_marker and self.end_call_marker in self.pending:
            self.pending = self.pending.replace(self.end_call_marker, "")
            if not self.end_requested:
                self.end_requested = True
                newly_requested = True

        self._commit_sentences()
        return newly_requested

    def add_user(self, text: str) -> Turn | None:
        """Commit a finished caller utterance. Blank text is ignored."""
        text = (text or "").strip()
        if not text:
            return None
        turn = Turn(role="user", text=text)
        self.turns.append(turn)
        logger.info(f"User: {text}")
        return turn

    def flush(self) -> Turn | None:
        """Commit whatever assistant text is still pending."""
        text = self.pending
        if self.end_call_marker:
            text = text.replace(self.end_call_marker, "")
        self.pending = ""
        return self._commit_assistant(text)

    def _commit_sentences(self) -> None:
        last = None
        for last in SENTENCE_BOUNDARY.finditer(self.pending):
            pass
        if last is None:
            return
        complete, self.pending = self.pending[: last.end()], self.pending[last.end():]
        self._commit_assistant(complete)

    def _commit_assistant(self, text: str) -> Turn | None:
        text = text.strip()
        if not text:
            return None
        turn = Turn(role="assistant", text=text)
        self.turns.append(turn)
        logger.info(f"Assistant: {text}")
        return turn

    def format(self) -> str:
        return "\n".join(f"{turn.role}: {turn.text}" for turn in self.turns)
