"""Fade envelopes for lyric entry and exit.

Two regimes coexist. The export path samples an absolute 0.4s fade at each
frame; the preview path follows a keyframe curve placed at 15% and 85% of the
line duration, eased like a CSS ``ease-in-out`` animation. They agree in shape
but not in timing (lines of roughly 2.0-2.7s fade visibly differently), so
they are kept as separate functions that share the ``FadeEnvelope`` result.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

EXPORT_FADE_SECONDS = 0.4
OFFSET_AMOUNT_PX = 10.0
PREVIEW_FADE_PERCENT = 15.0
EASE_IN_OUT = (0.42, 0.0, 0.58, 1.0)
BEZIER_EPSILON = 1e-6
BEZIER_NEWTON_STEPS = 8
BEZIER_BISECT_STEPS = 40


@dataclass(frozen=True)
class FadeEnvelope:
    """Opacity and vertical offset of a lyric line at one instant."""

    opacity: float
    vertical_offset_px: float


VISIBLE = FadeEnvelope(opacity=1.0, vertical_offset_px=0.0)
HIDDEN = FadeEnvelope(opacity=0.0, vertical_offset_px=0.0)


def clamp_unit(value: float) -> float:
    """Clamp a value to [0, 1]."""
    return max(0.0, min(1.0, value))


def compute_export_envelope(duration: float, elapsed_seconds: float) -> FadeEnvelope:
    """Compute the envelope sampled by the frame exporter."""
    if duration <= 0:
        return VISIBLE

    if duration > EXPORT_FADE_SECONDS * 2:
        if elapsed_seconds < EXPORT_FADE_SECONDS:
            opacity = clamp_unit(elapsed_seconds / EXPORT_FADE_SECONDS)
            return FadeEnvelope(opacity, OFFSET_AMOUNT_PX * (1 - opacity))
        if duration - elapsed_seconds < EXPORT_FADE_SECONDS:
            opacity = clamp_unit((duration - elapsed_seconds) / EXPORT_FADE_SECONDS)
            return FadeEnvelope(opacity, -OFFSET_AMOUNT_PX * (1 - opacity))
        return VISIBLE

    half_duration = duration / 2
    if elapsed_seconds < half_duration:
        opacity = elapsed_seconds / half_duration
    else:
        opacity = (duration - elapsed_seconds) / half_duration
    return FadeEnvelope(clamp_unit(opacity), 0.0)


PREVIEW_KEYFRAMES: Tuple[Tuple[float, FadeEnvelope], ...] = (
    (0.0, FadeEnvelope(0.0, OFFSET_AMOUNT_PX)),
    (PREVIEW_FADE_PERCENT / 100.0, VISIBLE),
    (1.0 - PREVIEW_FADE_PERCENT / 100.0, VISIBLE),
    (1.0, FadeEnvelope(0.0, -OFFSET_AMOUNT_PX)),
)


def _bezier_coordinate(t_value: float, p1: float, p2: float) -> float:
    inverse = 1.0 - t_value
    return (
        3 * inverse * inverse * t_value * p1
        + 3 * inverse * t_value * t_value * p2
        + t_value * t_value * t_value
    )


def _bezier_slope(t_value: float, p1: float, p2: float) -> float:
    inverse = 1.0 - t_value
    return (
        3 * inverse * inverse * p1
        + 6 * inverse * t_value * (p2 - p1)
        + 3 * t_value * t_value * (1.0 - p2)
    )


def cubic_bezier(
    progress: float, control_points: Tuple[float, float, float, float] = EASE_IN_OUT
) -> float:
    """Evaluate a CSS cubic-bezier timing function at a progress in [0, 1]."""
    x1, y1, x2, y2 = control_points
    progress = clamp_unit(progress)
    if progress in (0.0, 1.0):
        return progress

    t_value = progress
    for _ in range(BEZIER_NEWTON_STEPS):
        error = _bezier_coordinate(t_value, x1, x2) - progress
        if abs(error) < BEZIER_EPSILON:
            return _bezier_coordinate(t_value, y1, y2)
        slope = _bezier_slope(t_value, x1, x2)
        if abs(slope) < BEZIER_EPSILON:
            break
        t_value -= error / slope

    low, high = 0.0, 1.0
    t_value = progress
    for _ in range(BEZIER_BISECT_STEPS):
        x_value = _bezier_coordinate(t_value, x1, x2)
        if abs(x_value - progress) < BEZIER_EPSILON:
            break
        if x_value < progress:
            low = t_value
        else:
            high = t_value
        t_value = (low + high) / 2
    return _bezier_coordinate(t_value, y1, y2)


def interpolate_keyframes(
    progress: float, keyframes: Tuple[Tuple[float, FadeEnvelope], ...]
) -> FadeEnvelope:
    """Interpolate eased envelope keyframes at an animation progress."""
    if progress <= keyframes[0][0]:
        return keyframes[0][1]
    for (start_at, start_value), (end_at, end_value) in zip(keyframes, keyframes[1:]):
        if progress <= end_at:
            span = end_at - start_at
            local = cubic_bezier((progress - start_at) / span) if span > 0 else 1.0
            return FadeEnvelope(
                opacity=start_value.opacity
                + (end_value.opacity - start_value.opacity) * local,
                vertical_offset_px=start_value.vertical_offset_px
                + (end_value.vertical_offset_px - start_value.vertical_offset_px)
                * local,
            )
    return keyframes[-1][1]


def compute_preview_envelope(duration: float, elapsed_seconds: float) -> FadeEnvelope:
    """Compute the continuously animated envelope shown by the live preview."""
    if duration <= 0:
        return VISIBLE
    if elapsed_seconds < 0:
        # not started yet: base style applies
        return HIDDEN
    return interpolate_keyframes(elapsed_seconds / duration, PREVIEW_KEYFRAMES)
