"""
Per-call transcript of what the caller and the agent said.

Entries come from the realtime session's transcription events. Held in
memory only; each call gets its own CallTranscript.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

USER = "user"
ASSISTANT = "assistant"


@dataclass
class TranscriptEntry:
    role: str
    content: str
    call_id: Optional[str] = None


class CallTranscript:
    """
    Ordered transcript for one call.

    Oldest entries are trimmed once max_entries is exceeded.
    """

    def __init__(self, call_id: str, max_entries: int = 200):
        self.call_id = call_id
        self.max_entries = max_entries
        self.entries: List[TranscriptEntry] = []

    def add_user_text(self, text: str) -> None:
        """Add a caller utterance (input audio transcription)."""
        self._add(USER, text)

    def add_assistant_text(self, text: str) -> None:
        """Add an agent utterance (output audio transcript)."""
        self._add(ASSISTANT, text)

    def _add(self, role: str, text: str) -> None:
        if not text or not text.strip():
            return
        self.entries.append(TranscriptEntry(role=role, content=text.strip(), call_id=self.call_id))
        self._trim()
        logger.debug(f"[{self.call_id}] {role}: {text[:50]}...")

    def get_turn_count(self) -> int:
        """Get number of caller turns in the transcript."""
        return sum(1 for e in self.entries if e.role == USER)

    def as_text(self) -> str:
        return "\n".join(f"{e.role}: {e.content}" for e in self.entries)

    def _trim(self) -> None:
        while len(self.entries) > self.max_entries:
            removed = self.entries.pop(0)
            logger.debug(f"Trimmed oldest entry: {removed.role}")

    def __len__(self) -> int:
        return len(self.entries)


class TranscriptStore:
    """Transcripts for all live calls, keyed by call id."""

    def __init__(self, max_entries: int = 200):
        self.max_entries = max_entries
        self.transcripts: Dict[str, CallTranscript] = {}

    def get(self, call_id: str) -> CallTranscript:
        """Get or create the transcript for this call"""
        if call_id not in self.transcripts:
            self.transcripts[call_id] = CallTranscript(call_id, self.max_entries)
        return self.transcripts[call_id]

    def pop(self, call_id: str) -> Optional[CallTranscript]:
        return self.transcripts.pop(call_id, None)
