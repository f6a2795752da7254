"""
OpenAI Realtime bridge for live calls.

Exports:
    RealtimeBridge: Per-call realtime session
    TranscriptStore: In-memory per-call transcripts
"""

from .bridge import RealtimeBridge
from .transcript import TranscriptStore

__all__ = ["RealtimeBridge", "TranscriptStore"]
