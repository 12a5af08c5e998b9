"""Frame sampling plan for render_lyric_video."""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Iterator

from domain.lyric_video import INVALID_CONFIG_CODE, RenderValidationError

FRAME_RATE = 30
FRAME_NAME_PREFIX = "frame"
FRAME_NAME_SUFFIX = ".png"
MIN_FRAME_DIGITS = 4
FRAME_COUNT_EPSILON = 1e-9


@dataclass(frozen=True)
class FrameSample:
    """A single sampled instant of the timeline."""

    index: int
    time_seconds: float


@dataclass(frozen=True)
class RenderPlan:
    """Frame count, rate and naming for one export run."""

    total_frames: int
    fps: int

    def __post_init__(self) -> None:
        if self.fps <= 0:
            raise RenderValidationError(INVALID_CONFIG_CODE, "fps must be positive")
        if self.total_frames <= 0:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "duration and fps produce zero frames"
            )

    @property
    def frame_digits(self) -> int:
        return max(MIN_FRAME_DIGITS, len(str(self.total_frames - 1)))

    @property
    def frame_pattern(self) -> str:
        """ffmpeg image2 input pattern matching frame_file_name."""
        return f"{FRAME_NAME_PREFIX}%0{self.frame_digits}d{FRAME_NAME_SUFFIX}"

    @property
    def video_duration_seconds(self) -> float:
        return self.total_frames / self.fps

    def frame_file_name(self, index_value: int) -> str:
        """Zero-padded frame file name; lexicographic order equals frame order."""
        if index_value < 0 or index_value >= self.total_frames:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, f"frame index out of range: {index_value}"
            )
        return f"{FRAME_NAME_PREFIX}{index_value:0{self.frame_digits}d}{FRAME_NAME_SUFFIX}"

    def sample(self, index_value: int) -> FrameSample:
        """Return the sample for a frame index."""
        return FrameSample(index=index_value, time_seconds=index_value / self.fps)

    def iter_samples(self) -> Iterator[FrameSample]:
        """Yield every frame sample in ascending order."""
        for index_value in range(self.total_frames):
            yield self.sample(index_value)


def compute_total_frames(duration_seconds: float, fps: int) -> int:
    """Compute total frames for a duration (floor, never rounds up)."""
    if duration_seconds <= 0:
        return 0
    return int(math.floor(duration_seconds * fps + FRAME_COUNT_EPSILON))


def build_render_plan(duration_seconds: float, fps: int = FRAME_RATE) -> RenderPlan:
    """Build a render plan from the audio duration."""
    return RenderPlan(total_frames=compute_total_frames(duration_seconds, fps), fps=fps)


def compute_muxed_duration(
    video_duration_seconds: float, audio_duration_seconds: float
) -> float:
    """Duration of a mux that stops at the shorter stream."""
    return min(video_duration_seconds, audio_duration_seconds)
