"""Live preview: playback-clock driven lyric resolution and fade animation."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Protocol, Sequence, Tuple

from PIL import Image

from domain.lyric_video import INVALID_CONFIG_CODE, LyricEvent, RenderValidationError
from service.compositor import FrameCompositor
from service.fade_envelope import FadeEnvelope, compute_preview_envelope
from service.timeline import resolve_active_index

LOGGER = logging.getLogger("render_lyric_video.preview")


class PlaybackClock(Protocol):
    """Audio transport position, the single source of preview time."""

    def current_time(self) -> float: ...

    def is_playing(self) -> bool: ...

    def seek(self, time_seconds: float) -> None: ...


class ManualClock:
    """Playback clock advanced explicitly by the caller."""

    def __init__(
        self, time_seconds: float = 0.0, duration_seconds: float | None = None
    ) -> None:
        self._time_seconds = max(0.0, time_seconds)
        self._duration_seconds = duration_seconds
        self._playing = False

    def current_time(self) -> float:
        return self._time_seconds

    def is_playing(self) -> bool:
        return self._playing

    def play(self) -> None:
        self._playing = True

    def pause(self) -> None:
        self._playing = False

    def seek(self, time_seconds: float) -> None:
        clamped = max(0.0, time_seconds)
        if self._duration_seconds is not None:
            clamped = min(clamped, self._duration_seconds)
        self._time_seconds = clamped

    def advance(self, delta_seconds: float) -> None:
        """Move time forward while playing; paused clocks do not move."""
        if self._playing:
            self.seek(self._time_seconds + delta_seconds)


@dataclass(frozen=True)
class FadeAnimation:
    """A fade animation scheduled against the playback clock.

    ``delay_seconds`` is measured from ``scheduled_at``; it is negative when the
    animation is joined mid-line so that it resumes at the correct phase.
    """

    event_index: int
    duration_seconds: float
    delay_seconds: float
    scheduled_at: float

    def elapsed_at(self, time_seconds: float) -> float:
        return time_seconds - self.scheduled_at - self.delay_seconds

    def envelope_at(self, time_seconds: float) -> FadeEnvelope:
        return compute_preview_envelope(
            self.duration_seconds, self.elapsed_at(time_seconds)
        )


@dataclass(frozen=True)
class PreviewState:
    """What the preview shows at one tick."""

    time_seconds: float
    event_index: int | None
    envelope: FadeEnvelope | None
    playing: bool


class LivePreviewDriver:
    """Resolves the active lyric on every tick and keeps its fade in phase."""

    def __init__(
        self,
        events: Sequence[LyricEvent],
        clock: PlaybackClock,
        compositor: FrameCompositor | None = None,
    ) -> None:
        self._events: Tuple[LyricEvent, ...] = tuple(events)
        self._clock = clock
        self._compositor = compositor
        self._current_index: int | None = None
        self._animation: FadeAnimation | None = None

    @property
    def current_index(self) -> int | None:
        return self._current_index

    @property
    def animation(self) -> FadeAnimation | None:
        return self._animation

    def _schedule(self, event_index: int | None, now: float) -> None:
        self._current_index = event_index
        if event_index is None:
            self._animation = None
            return
        event = self._events[event_index]
        self._animation = FadeAnimation(
            event_index=event_index,
            duration_seconds=event.duration_seconds,
            delay_seconds=event.start_seconds - now,
            scheduled_at=now,
        )
        LOGGER.debug(
            "preview line %d scheduled with delay %.3fs",
            event_index,
            self._animation.delay_seconds,
        )

    def _state(self, now: float) -> PreviewState:
        envelope = None
        if self._animation is not None:
            envelope = self._animation.envelope_at(now)
        return PreviewState(
            time_seconds=now,
            event_index=self._current_index,
            envelope=envelope,
            playing=self._clock.is_playing(),
        )

    def tick(self) -> PreviewState:
        """Sample the clock; reschedule the fade only when the line changes."""
        now = self._clock.current_time()
        event_index = resolve_active_index(self._events, now)
        if event_index != self._current_index or (
            event_index is not None and self._animation is None
        ):
            self._schedule(event_index, now)
        return self._state(now)

    def seek(self, time_seconds: float) -> PreviewState:
        """Jump the clock and resync the fade to the new position."""
        self._clock.seek(time_seconds)
        now = self._clock.current_time()
        self._schedule(resolve_active_index(self._events, now), now)
        return self._state(now)

    def render(self) -> Image.Image:
        """Draw the preview frame for the current tick."""
        if self._compositor is None:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "preview rendering needs a compositor"
            )
        state = self.tick()
        if state.event_index is None or state.envelope is None:
            return self._compositor.render(None, None)
        return self._compositor.render(
            self._events[state.event_index].text, state.envelope
        )
