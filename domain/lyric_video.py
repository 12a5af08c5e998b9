"""Domain types and parsing for render_lyric_video."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import json
import re
from typing import Any, Mapping, Sequence, Tuple

INVALID_COLOR_CODE = "render_lyric_video.input.invalid_color"
INVALID_CONFIG_CODE = "render_lyric_video.input.invalid_config"
INVALID_STYLE_CODE = "render_lyric_video.input.invalid_style"
INVALID_EVENT_CODE = "render_lyric_video.input.invalid_event"
INVALID_SRT_CODE = "render_lyric_video.input.invalid_srt"
INVALID_RESOLUTION_CODE = "render_lyric_video.input.invalid_resolution"
INVALID_THEME_CODE = "render_lyric_video.input.invalid_theme"
EMPTY_TIMELINE_CODE = "render_lyric_video.input.empty_timeline"
INPUT_FILE_CODE = "render_lyric_video.input.file_error"
FONT_DIR_CODE = "render_lyric_video.input.fonts_missing"
FONT_LOAD_CODE = "render_lyric_video.input.fonts_unloadable"

SRT_TIME_RANGE_PATTERN = re.compile(
    r"^(?P<start>\d{2}:\d{2}:\d{2},\d{3})\s*-->\s*(?P<end>\d{2}:\d{2}:\d{2},\d{3})$"
)
SRT_TIMECODE_PATTERN = re.compile(r"^(\d{2}):(\d{2}):(\d{2}),(\d{3})$")
SRT_LINE_BREAK = "\r\n"

RESOLUTION_PRESETS = {
    "720p": (1280, 720),
    "1080p": (1920, 1080),
}
DEFAULT_RESOLUTION = "720p"
VIDEO_FILE_SUFFIX = "_lyrics_video.mp4"
DEFAULT_SRT_STEM = "lyrics"


class RenderValidationError(ValueError):
    """Validation error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class RenderPipelineError(RuntimeError):
    """Runtime error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class LyricPosition(str, Enum):
    """Vertical anchor of the lyric line."""

    TOP = "top"
    CENTER = "center"
    BOTTOM = "bottom"


class TextAlignment(str, Enum):
    """Horizontal alignment of the lyric line."""

    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class AlbumArtPosition(str, Enum):
    """Placement of the album art square."""

    LEFT = "left"
    RIGHT = "right"
    HIDDEN = "hidden"


@dataclass(frozen=True)
class ColorTheme:
    """Named set of lyric and song-info colors."""

    name: str
    active: str
    inactive_primary: str
    inactive_secondary: str
    info: str
    sub_info: str


COLOR_THEMES = {
    "light": ColorTheme(
        name="light",
        active="#FFFFFF",
        inactive_primary="#E5E7EB",
        inactive_secondary="#D1D5DB",
        info="#FFFFFF",
        sub_info="#E5E7EB",
    ),
    "dark": ColorTheme(
        name="dark",
        active="#1F2937",
        inactive_primary="#374151",
        inactive_secondary="#4B5563",
        info="#1F2937",
        sub_info="#374151",
    ),
}
DEFAULT_THEME = "light"


def parse_hex_color_to_rgba(color_value: str) -> Tuple[int, int, int, int]:
    """Parse a #RRGGBB color token into an opaque RGBA tuple."""
    normalized = color_value.strip()
    match_value = re.fullmatch(r"#([0-9a-fA-F]{6})", normalized)
    if not match_value:
        raise RenderValidationError(
            INVALID_COLOR_CODE,
            f"invalid color value: {color_value!r}",
        )

    rgb_hex = match_value.group(1)
    red_value = int(rgb_hex[0:2], 16)
    green_value = int(rgb_hex[2:4], 16)
    blue_value = int(rgb_hex[4:6], 16)
    return (red_value, green_value, blue_value, 255)


def resolve_resolution(preset_name: str) -> Tuple[int, int]:
    """Return the (width, height) for a named resolution preset."""
    try:
        return RESOLUTION_PRESETS[preset_name.strip().lower()]
    except KeyError as exc:
        raise RenderValidationError(
            INVALID_RESOLUTION_CODE,
            f"unknown resolution preset: {preset_name!r}",
        ) from exc


def resolve_theme(theme_name: str) -> ColorTheme:
    """Return a color theme by name."""
    try:
        return COLOR_THEMES[theme_name.strip().lower()]
    except KeyError as exc:
        raise RenderValidationError(
            INVALID_THEME_CODE, f"unknown color theme: {theme_name!r}"
        ) from exc


@dataclass(frozen=True)
class LyricEvent:
    """One lyric line with its active time window."""

    text: str
    start_seconds: float
    end_seconds: float

    def __post_init__(self) -> None:
        if self.start_seconds < 0:
            raise RenderValidationError(
                INVALID_EVENT_CODE, "lyric start time must be non-negative"
            )
        if self.end_seconds <= self.start_seconds:
            raise RenderValidationError(
                INVALID_EVENT_CODE, "lyric end time must be after start time"
            )

    @property
    def duration_seconds(self) -> float:
        return self.end_seconds - self.start_seconds


@dataclass(frozen=True)
class SongMetadata:
    """Song title and artist shown in the frame footer."""

    title: str
    artist: str


@dataclass(frozen=True)
class StyleConfig:
    """Immutable snapshot of every visual parameter for one render."""

    font_family: str = "sans-serif"
    font_weight: int = 700
    font_size: int = 48
    active_color: Tuple[int, int, int, int] = (255, 255, 255, 255)
    inactive_color_primary: Tuple[int, int, int, int] = (229, 231, 235, 255)
    inactive_color_secondary: Tuple[int, int, int, int] = (209, 213, 219, 255)
    lyric_position: LyricPosition = LyricPosition.CENTER
    text_alignment: TextAlignment = TextAlignment.CENTER
    album_art_position: AlbumArtPosition = AlbumArtPosition.LEFT
    album_art_size: int = 150
    background_blur: float = 8.0
    show_song_info: bool = True
    resolution: str = DEFAULT_RESOLUTION

    def __post_init__(self) -> None:
        if not self.font_family.strip():
            raise RenderValidationError(
                INVALID_STYLE_CODE, "font_family must be non-empty"
            )
        if self.font_weight < 100 or self.font_weight > 900:
            raise RenderValidationError(
                INVALID_STYLE_CODE, "font_weight must be between 100 and 900"
            )
        if self.font_size <= 0:
            raise RenderValidationError(
                INVALID_STYLE_CODE, "font_size must be positive"
            )
        for color_value in (
            self.active_color,
            self.inactive_color_primary,
            self.inactive_color_secondary,
        ):
            if len(color_value) != 4:
                raise RenderValidationError(INVALID_COLOR_CODE, "color is invalid")
            for channel in color_value:
                if channel < 0 or channel > 255:
                    raise RenderValidationError(
                        INVALID_COLOR_CODE, "color channel out of range"
                    )
        if not isinstance(self.lyric_position, LyricPosition):
            raise RenderValidationError(
                INVALID_STYLE_CODE, "lyric_position is invalid"
            )
        if not isinstance(self.text_alignment, TextAlignment):
            raise RenderValidationError(
                INVALID_STYLE_CODE, "text_alignment is invalid"
            )
        if not isinstance(self.album_art_position, AlbumArtPosition):
            raise RenderValidationError(
                INVALID_STYLE_CODE, "album_art_position is invalid"
            )
        if self.album_art_size <= 0:
            raise RenderValidationError(
                INVALID_STYLE_CODE, "album_art_size must be positive"
            )
        if self.background_blur < 0:
            raise RenderValidationError(
                INVALID_STYLE_CODE, "background_blur must be non-negative"
            )
        resolve_resolution(self.resolution)

    @property
    def frame_size(self) -> Tuple[int, int]:
        return resolve_resolution(self.resolution)


def parse_style_enum(enum_type: type[Enum], value: str, field_name: str) -> Enum:
    """Parse a style option name into its enum member."""
    normalized = value.strip().lower()
    try:
        return enum_type(normalized)
    except ValueError as exc:
        raise RenderValidationError(
            INVALID_STYLE_CODE, f"invalid {field_name}: {value!r}"
        ) from exc


def build_video_file_name(song_title: str) -> str:
    """Derive the exported video file name from a song title."""
    return f"{song_title.replace(' ', '_')}{VIDEO_FILE_SUFFIX}"


def build_srt_file_name(song_title: str) -> str:
    """Derive the exported SRT file name from a song title."""
    stem = song_title.replace(" ", "_") or DEFAULT_SRT_STEM
    return f"{stem}.srt"


def format_timecode(time_seconds: float) -> str:
    """Format seconds as an SRT timecode (HH:MM:SS,mmm)."""
    total_millis = int(round(max(0.0, time_seconds) * 1000))
    hours, remainder = divmod(total_millis, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    seconds, millis = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{millis:03d}"


def parse_timecode(timecode_value: str) -> float:
    """Parse an SRT timecode into seconds."""
    match = SRT_TIMECODE_PATTERN.fullmatch(timecode_value.strip())
    if not match:
        raise RenderValidationError(
            INVALID_SRT_CODE, f"invalid timecode: {timecode_value!r}"
        )
    hours, minutes, seconds, millis = (int(part) for part in match.groups())
    return hours * 3600 + minutes * 60 + seconds + millis / 1000.0


def format_srt(events: Sequence[LyricEvent]) -> str:
    """Serialize lyric events as SRT with CRLF line breaks."""
    blocks = [
        SRT_LINE_BREAK.join(
            (
                str(index_value),
                f"{format_timecode(event.start_seconds)} --> "
                f"{format_timecode(event.end_seconds)}",
                event.text,
            )
        )
        for index_value, event in enumerate(events, start=1)
    ]
    return (SRT_LINE_BREAK * 2).join(blocks)


def parse_srt(text_value: str) -> Tuple[LyricEvent, ...]:
    """Parse SRT content into lyric events."""
    normalized = text_value.replace("\ufeff", "").replace("\r", "").strip()
    if not normalized:
        raise RenderValidationError(EMPTY_TIMELINE_CODE, "SRT input is empty")

    blocks = re.split(r"\n\s*\n", normalized)
    events: list[LyricEvent] = []

    for block in blocks:
        lines = [line.strip() for line in block.splitlines() if line.strip()]
        if not lines:
            continue
        if lines[0].isdigit():
            lines = lines[1:]
        if not lines:
            raise RenderValidationError(INVALID_SRT_CODE, "SRT block missing timecode")

        time_line = lines[0]
        match = SRT_TIME_RANGE_PATTERN.fullmatch(time_line)
        if not match:
            raise RenderValidationError(
                INVALID_SRT_CODE, f"invalid time range: {time_line!r}"
            )

        start_seconds = parse_timecode(match.group("start"))
        end_seconds = parse_timecode(match.group("end"))
        text_lines = lines[1:]
        if not text_lines:
            raise RenderValidationError(INVALID_SRT_CODE, "SRT block missing text")

        events.append(
            LyricEvent(
                text="\n".join(text_lines),
                start_seconds=start_seconds,
                end_seconds=end_seconds,
            )
        )

    if not events:
        raise RenderValidationError(EMPTY_TIMELINE_CODE, "SRT contains no lyrics")

    return tuple(events)


STYLE_COLOR_FIELDS = (
    "active_color",
    "inactive_color_primary",
    "inactive_color_secondary",
)
STYLE_FIELDS = frozenset(
    (
        "theme",
        "font_family",
        "font_weight",
        "font_size",
        "lyric_position",
        "text_alignment",
        "album_art_position",
        "album_art_size",
        "background_blur",
        "show_song_info",
        "resolution",
    )
    + STYLE_COLOR_FIELDS
)


def build_style_config(values: Mapping[str, Any]) -> StyleConfig:
    """Build a StyleConfig from plain values (style file or CLI flags).

    A ``theme`` supplies the three lyric colors; explicit colors override it.
    Missing fields keep their defaults.
    """
    unknown_fields = sorted(set(values) - STYLE_FIELDS)
    if unknown_fields:
        raise RenderValidationError(
            INVALID_STYLE_CODE, f"unknown style fields: {', '.join(unknown_fields)}"
        )

    style_kwargs: dict[str, Any] = {}
    theme_name = values.get("theme")
    if theme_name is not None:
        theme = resolve_theme(str(theme_name))
        style_kwargs["active_color"] = parse_hex_color_to_rgba(theme.active)
        style_kwargs["inactive_color_primary"] = parse_hex_color_to_rgba(
            theme.inactive_primary
        )
        style_kwargs["inactive_color_secondary"] = parse_hex_color_to_rgba(
            theme.inactive_secondary
        )
    for field_name in STYLE_COLOR_FIELDS:
        if values.get(field_name) is not None:
            style_kwargs[field_name] = parse_hex_color_to_rgba(str(values[field_name]))

    if values.get("font_family") is not None:
        style_kwargs["font_family"] = str(values["font_family"])
    if values.get("resolution") is not None:
        style_kwargs["resolution"] = str(values["resolution"]).strip().lower()
    if values.get("show_song_info") is not None:
        if not isinstance(values["show_song_info"], bool):
            raise RenderValidationError(
                INVALID_STYLE_CODE, "show_song_info must be a boolean"
            )
        style_kwargs["show_song_info"] = values["show_song_info"]

    for field_name, enum_type in (
        ("lyric_position", LyricPosition),
        ("text_alignment", TextAlignment),
        ("album_art_position", AlbumArtPosition),
    ):
        if values.get(field_name) is not None:
            style_kwargs[field_name] = parse_style_enum(
                enum_type, str(values[field_name]), field_name
            )

    for field_name, number_type in (
        ("font_weight", int),
        ("font_size", int),
        ("album_art_size", int),
        ("background_blur", float),
    ):
        if values.get(field_name) is None:
            continue
        raw_value = values[field_name]
        if isinstance(raw_value, bool):
            raise RenderValidationError(
                INVALID_STYLE_CODE, f"{field_name} must be a number"
            )
        try:
            style_kwargs[field_name] = number_type(raw_value)
        except (TypeError, ValueError) as exc:
            raise RenderValidationError(
                INVALID_STYLE_CODE, f"{field_name} must be a number"
            ) from exc

    return StyleConfig(**style_kwargs)


def _read_event_time(item: Mapping[str, Any], keys: Tuple[str, ...]) -> float:
    for key in keys:
        if key in item:
            raw_value = item[key]
            if isinstance(raw_value, bool) or not isinstance(raw_value, (int, float)):
                raise RenderValidationError(
                    INVALID_EVENT_CODE, f"{key} must be a number"
                )
            return float(raw_value)
    raise RenderValidationError(
        INVALID_EVENT_CODE, f"lyric event missing {keys[0]}"
    )


def parse_timeline_json(text_value: str) -> Tuple[LyricEvent, ...]:
    """Parse a JSON list of {text, startTime, endTime} objects."""
    try:
        payload = json.loads(text_value)
    except json.JSONDecodeError as exc:
        raise RenderValidationError(
            INVALID_EVENT_CODE, f"timeline is not valid JSON: {exc.msg}"
        ) from exc
    if not isinstance(payload, list):
        raise RenderValidationError(
            INVALID_EVENT_CODE, "timeline JSON must be a list of events"
        )

    events: list[LyricEvent] = []
    for item in payload:
        if not isinstance(item, dict) or not isinstance(item.get("text"), str):
            raise RenderValidationError(
                INVALID_EVENT_CODE, "each lyric event needs a text string"
            )
        events.append(
            LyricEvent(
                text=item["text"],
                start_seconds=_read_event_time(item, ("startTime", "start_seconds")),
                end_seconds=_read_event_time(item, ("endTime", "end_seconds")),
            )
        )
    if not events:
        raise RenderValidationError(EMPTY_TIMELINE_CODE, "timeline contains no lyrics")
    return tuple(events)
