"""Active lyric resolution for render_lyric_video."""

from __future__ import annotations

from typing import Sequence

from domain.lyric_video import LyricEvent


def resolve_active_index(events: Sequence[LyricEvent], time_seconds: float) -> int | None:
    """Resolve the active event for a playback position.

    Scans from the last event backward and keeps the most recently started
    event. Returns None before the first event and inside gaps.
    """
    for index_value in range(len(events) - 1, -1, -1):
        event = events[index_value]
        if time_seconds >= event.start_seconds:
            if time_seconds > event.end_seconds:
                return None
            return index_value
    return None


def resolve_frame_index(events: Sequence[LyricEvent], time_seconds: float) -> int | None:
    """Resolve the active event for a sampled frame time (first match wins)."""
    for index_value, event in enumerate(events):
        if event.start_seconds <= time_seconds <= event.end_seconds:
            return index_value
    return None


def active_event(events: Sequence[LyricEvent], time_seconds: float) -> LyricEvent | None:
    """Return the event active at a frame time, if any."""
    index_value = resolve_frame_index(events, time_seconds)
    if index_value is None:
        return None
    return events[index_value]
