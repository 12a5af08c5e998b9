"""Tests for export and preview fade envelopes."""

from __future__ import annotations

import pytest

from service.fade_envelope import (
    EXPORT_FADE_SECONDS,
    OFFSET_AMOUNT_PX,
    VISIBLE,
    compute_export_envelope,
    compute_preview_envelope,
    cubic_bezier,
)


def test_export_envelope_stays_in_unit_range() -> None:
    """Opacity is within [0, 1] for any duration and sample time."""
    for duration in (0.1, 0.5, 0.8, 0.81, 1.0, 2.5, 30.0):
        steps = 200
        for step in range(-10, steps + 10):
            elapsed = duration * step / steps
            envelope = compute_export_envelope(duration, elapsed)
            assert 0.0 <= envelope.opacity <= 1.0, (duration, elapsed)


def test_zero_duration_is_fully_visible() -> None:
    """Zero-length lines are shown without a fade."""
    assert compute_export_envelope(0.0, 0.0) == VISIBLE
    assert compute_export_envelope(-1.0, 0.5) == VISIBLE
    assert compute_preview_envelope(0.0, 0.0) == VISIBLE


def test_long_line_fades_in_and_out() -> None:
    """Lines longer than two fades ramp linearly at both edges."""
    duration = 2.0
    start = compute_export_envelope(duration, 0.0)
    assert start.opacity == 0.0
    assert start.vertical_offset_px == pytest.approx(OFFSET_AMOUNT_PX)

    quarter_in = compute_export_envelope(duration, EXPORT_FADE_SECONDS / 2)
    assert quarter_in.opacity == pytest.approx(0.5)
    assert quarter_in.vertical_offset_px == pytest.approx(OFFSET_AMOUNT_PX / 2)

    assert compute_export_envelope(duration, 1.0) == VISIBLE
    assert compute_export_envelope(duration, EXPORT_FADE_SECONDS) == VISIBLE

    fading_out = compute_export_envelope(duration, duration - EXPORT_FADE_SECONDS / 2)
    assert fading_out.opacity == pytest.approx(0.5)
    assert fading_out.vertical_offset_px == pytest.approx(-OFFSET_AMOUNT_PX / 2)

    end = compute_export_envelope(duration, duration)
    assert end.opacity == 0.0
    assert end.vertical_offset_px == pytest.approx(-OFFSET_AMOUNT_PX)


def test_short_line_is_triangular() -> None:
    """Short lines peak at their midpoint, symmetric and without offset."""
    duration = 0.6
    peak = compute_export_envelope(duration, duration / 2)
    assert peak.opacity == pytest.approx(1.0)
    assert peak.vertical_offset_px == 0.0
    for step in range(1, 30):
        elapsed = duration / 2 * step / 30
        rising = compute_export_envelope(duration, elapsed)
        falling = compute_export_envelope(duration, duration - elapsed)
        assert rising.opacity == pytest.approx(falling.opacity)
        assert rising.vertical_offset_px == 0.0


def test_boundary_duration_uses_triangle() -> None:
    """A line exactly two fades long takes the short-line branch."""
    duration = EXPORT_FADE_SECONDS * 2
    envelope = compute_export_envelope(duration, 0.1)
    assert envelope.opacity == pytest.approx(0.25)
    assert envelope.vertical_offset_px == 0.0


def test_export_envelope_is_continuous_inside_long_lines() -> None:
    """No jumps larger than one fade step inside a line."""
    duration = 3.0
    steps = 3000
    previous = compute_export_envelope(duration, 0.0).opacity
    for step in range(1, steps + 1):
        current = compute_export_envelope(duration, duration * step / steps).opacity
        assert abs(current - previous) <= duration / steps / EXPORT_FADE_SECONDS + 1e-9
        previous = current


def test_cubic_bezier_ease_in_out() -> None:
    """The ease-in-out curve is anchored and symmetric around its midpoint."""
    assert cubic_bezier(0.0) == 0.0
    assert cubic_bezier(1.0) == 1.0
    assert cubic_bezier(0.5) == pytest.approx(0.5, abs=1e-4)
    assert cubic_bezier(0.2) < 0.2
    assert cubic_bezier(0.8) > 0.8
    assert cubic_bezier(0.3) + cubic_bezier(0.7) == pytest.approx(1.0, abs=1e-4)


def test_preview_keyframes() -> None:
    """Preview envelope hits each keyframe of the fade animation."""
    duration = 4.0
    start = compute_preview_envelope(duration, 0.0)
    assert start.opacity == 0.0
    assert start.vertical_offset_px == pytest.approx(OFFSET_AMOUNT_PX)

    assert compute_preview_envelope(duration, duration * 0.15) == VISIBLE
    assert compute_preview_envelope(duration, duration * 0.5) == VISIBLE
    assert compute_preview_envelope(duration, duration * 0.85) == VISIBLE

    end = compute_preview_envelope(duration, duration)
    assert end.opacity == 0.0
    assert end.vertical_offset_px == pytest.approx(-OFFSET_AMOUNT_PX)


def test_preview_fade_is_eased() -> None:
    """Halfway through the fade-in segment the eased opacity is one half."""
    duration = 4.0
    midway = compute_preview_envelope(duration, duration * 0.075)
    assert midway.opacity == pytest.approx(0.5, abs=1e-3)
    assert midway.vertical_offset_px == pytest.approx(OFFSET_AMOUNT_PX / 2, abs=1e-2)

    early = compute_preview_envelope(duration, duration * 0.03)
    assert early.opacity < 0.2


def test_preview_before_and_after_animation() -> None:
    """Before the line starts it is hidden; after it ends the last frame holds."""
    duration = 2.0
    before = compute_preview_envelope(duration, -0.5)
    assert before.opacity == 0.0
    after = compute_preview_envelope(duration, duration + 1.0)
    assert after.opacity == 0.0
    assert after.vertical_offset_px == pytest.approx(-OFFSET_AMOUNT_PX)
