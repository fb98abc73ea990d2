"""
Merging of overlapping transcript fragments into one running transcript.

Streaming recognizers re-finalize sliding windows of audio, so the same
words can arrive more than once: verbatim, as a prefix of an expanded
fragment, or overlapping the tail of what was already committed. The
functions here keep the committed text growing without repeating words.
"""
from collections import deque
from dataclasses import dataclass, field
from typing import Deque

RECENT_FRAGMENTS = 5


@dataclass
class RunningTranscript:
    committed_text: str = ""
    recent_final_fragments: Deque[str] = field(
        default_factory=lambda: deque(maxlen=RECENT_FRAGMENTS)
    )
    current_interim_text: str = ""


@dataclass
class ReconcileResult:
    is_new: bool
    updated_text: str
    appended_text: str = ""


def longest_overlap(committed: str, fragment: str) -> int:
    """
    Length of the longest suffix of ``committed`` equal to a prefix of ``fragment``.

    Lengths are scanned upward and every match overwrites the previous one, so
    the longest match wins.
    """
    overlap = 0
    for k in range(1, min(len(committed), len(fragment))):
        if committed.endswith(fragment[:k]):
            overlap = k
    return overlap


def reconcile(running: RunningTranscript, fragment: str) -> ReconcileResult:
    """Fold a final fragment into ``running`` and report what, if anything, it added."""
    committed = running.committed_text

    if fragment in running.recent_final_fragments:
        return ReconcileResult(is_new=False, updated_text=committed)
    running.recent_final_fragments.append(fragment)

    if not committed:
        running.committed_text = fragment
        return ReconcileResult(is_new=True, updated_text=fragment, appended_text=fragment)

    if fragment in committed:
        return ReconcileResult(is_new=False, updated_text=committed)

    if committed in fragment:
        # Expanded re-issue of everything so far
        appended = fragment[len(committed):] if fragment.startswith(committed) else fragment
        running.committed_text = fragment
        return ReconcileResult(is_new=True, updated_text=fragment, appended_text=appended)

    k = longest_overlap(committed, fragment)
    if k > 0:
        tail = fragment[k:]
        if not tail.strip():
            return ReconcileResult(is_new=False, updated_text=committed)
        running.committed_text = committed + tail
        return ReconcileResult(is_new=True, updated_text=running.committed_text, appended_text=tail)

    appended = " " + fragment
    running.committed_text = committed + appended
    return ReconcileResult(is_new=True, updated_text=running.committed_text, appended_text=appended)


def apply_interim(running: RunningTranscript, text: str) -> None:
    running.current_interim_text = text


def clear_interim(running: RunningTranscript) -> None:
    running.current_interim_text = ""
