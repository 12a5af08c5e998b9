#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "pillow>=10.1",
#   "numpy>=1.26"
# ]
# ///
"""Render a lyric video (MP4), an SRT file or a preview still from timed lyrics."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from enum import Enum
import json
import logging
import os
import sys
import tempfile
from typing import Any, Mapping, Sequence, Tuple

from domain.lyric_video import (
    INPUT_FILE_CODE,
    INVALID_CONFIG_CODE,
    STYLE_COLOR_FIELDS,
    LyricEvent,
    RenderPipelineError,
    RenderValidationError,
    SongMetadata,
    StyleConfig,
    build_srt_file_name,
    build_style_config,
    build_video_file_name,
    format_srt,
    parse_srt,
    parse_timeline_json,
)
from service.assets import ExportAssets, load_background_image, probe_audio_duration
from service.compositor import FontCatalog, FrameCompositor, encode_png
from service.export_pipeline import ExportProgress, ExportState, LyricVideoExporter
from service.preview import LivePreviewDriver, ManualClock
from service.render_plan import FRAME_RATE, compute_muxed_duration, compute_total_frames

LOGGER = logging.getLogger("render_lyric_video")

LOG_LEVEL_ENV = "RENDER_LYRIC_VIDEO_LOG_LEVEL"
OUTPUT_WRITE_CODE = "render_lyric_video.output.write_failed"
PROGRESS_LOG_STEP = 10.0
OUTPUT_FILE_MODE = 0o666


class RenderMode(str, Enum):
    """What the CLI produces."""

    VIDEO = "video"
    SRT = "srt"
    PREVIEW = "preview"


@dataclass(frozen=True)
class RenderRequest:
    """Parsed CLI request and runtime options."""

    mode: RenderMode
    events: Tuple[LyricEvent, ...]
    style: StyleConfig
    song: SongMetadata
    output_path: str
    audio_source: str | None
    background_source: str | None
    audio_duration_seconds: float | None
    fonts_dir: str | None
    render_workers: int
    preview_time_seconds: float | None


def configure_logging(env: Mapping[str, str]) -> None:
    """Configure logging for CLI output."""
    level_name = env.get(LOG_LEVEL_ENV, "INFO").strip().upper()
    level = logging.INFO
    if level_name == "DEBUG":
        level = logging.DEBUG
    elif level_name == "WARNING":
        level = logging.WARNING
    elif level_name == "ERROR":
        level = logging.ERROR
    logging.basicConfig(level=level, format="%(message)s")


def read_utf8_text_strict(file_path: str) -> str:
    """Read a UTF-8 file with strict decoding."""
    try:
        with open(file_path, "rb") as file_handle:
            file_bytes = file_handle.read()
    except FileNotFoundError as exc:
        raise RenderValidationError(
            INPUT_FILE_CODE, f"input file not found: {file_path}"
        ) from exc

    try:
        return file_bytes.decode("utf-8", errors="strict")
    except UnicodeDecodeError as exc:
        raise RenderValidationError(
            INPUT_FILE_CODE,
            f"input file is not valid UTF-8 at byte offset {exc.start}",
        ) from exc


def load_timeline(file_path: str) -> Tuple[LyricEvent, ...]:
    """Load timed lyrics from an SRT or JSON file."""
    text_value = read_utf8_text_strict(file_path)
    if file_path.lower().endswith(".json"):
        return parse_timeline_json(text_value)
    return parse_srt(text_value)


def load_style_file(file_path: str) -> dict[str, Any]:
    """Load style values from a JSON document."""
    try:
        payload = json.loads(read_utf8_text_strict(file_path))
    except json.JSONDecodeError as exc:
        raise RenderValidationError(
            INVALID_CONFIG_CODE, f"style file is not valid JSON: {exc.msg}"
        ) from exc
    if not isinstance(payload, dict):
        raise RenderValidationError(
            INVALID_CONFIG_CODE, "style file must contain a JSON object"
        )
    return payload


def collect_style_values(parsed: argparse.Namespace) -> dict[str, Any]:
    """Merge style-file values with explicit CLI flags (flags win)."""
    values: dict[str, Any] = {}
    if parsed.style_file:
        values.update(load_style_file(parsed.style_file))
    if parsed.theme is not None:
        # a theme on the command line replaces file-provided colors
        for field_name in STYLE_COLOR_FIELDS:
            values.pop(field_name, None)
    flag_values = {
        "theme": parsed.theme,
        "font_family": parsed.font_family,
        "font_weight": parsed.font_weight,
        "font_size": parsed.font_size,
        "active_color": parsed.active_color,
        "lyric_position": parsed.lyric_position,
        "text_alignment": parsed.text_alignment,
        "album_art_position": parsed.album_art_position,
        "album_art_size": parsed.album_art_size,
        "background_blur": parsed.background_blur,
        "show_song_info": parsed.show_song_info,
        "resolution": parsed.resolution,
    }
    for field_name, flag_value in flag_values.items():
        if flag_value is not None:
            values[field_name] = flag_value
    return values


def parse_args(argv: Sequence[str]) -> RenderRequest:
    """Parse CLI arguments into a RenderRequest."""
    parser = argparse.ArgumentParser(prog="render_lyric_video.py", add_help=True)
    parser.add_argument("--lyrics-file", required=True, help="SRT or JSON timeline")
    parser.add_argument("--audio", default=None, help="audio path or http(s) URL")
    parser.add_argument(
        "--background-image", default=None, help="image path or http(s) URL"
    )
    parser.add_argument("--title", default="")
    parser.add_argument("--artist", default="")
    parser.add_argument("--output-video-file", default=None)
    parser.add_argument("--audio-duration-seconds", type=float, default=None)
    parser.add_argument("--fonts-dir", default=None)
    parser.add_argument("--render-workers", type=int, default=1)
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--srt-output",
        nargs="?",
        const="",
        default=None,
        help="SRT path; defaults to <title>.srt when given without a value",
    )
    mode_group.add_argument("--preview-output", default=None)
    parser.add_argument("--preview-at", type=float, default=None)

    parser.add_argument("--style-file", default=None)
    parser.add_argument("--theme", default=None, help="light or dark")
    parser.add_argument("--font-family", default=None)
    parser.add_argument("--font-weight", type=int, default=None)
    parser.add_argument("--font-size", type=int, default=None)
    parser.add_argument("--active-color", default=None, help="#RRGGBB")
    parser.add_argument("--lyric-position", default=None, help="top, center or bottom")
    parser.add_argument("--text-alignment", default=None, help="left, center or right")
    parser.add_argument(
        "--album-art-position", default=None, help="left, right or hidden"
    )
    parser.add_argument("--album-art-size", type=int, default=None)
    parser.add_argument("--background-blur", type=float, default=None)
    song_info_group = parser.add_mutually_exclusive_group()
    song_info_group.add_argument(
        "--show-song-info", dest="show_song_info", action="store_true", default=None
    )
    song_info_group.add_argument(
        "--hide-song-info",
        dest="show_song_info",
        action="store_false",
        default=None,
    )
    parser.add_argument("--resolution", default=None, help="720p or 1080p")

    parsed = parser.parse_args(list(argv))
    events = load_timeline(parsed.lyrics_file)
    style = build_style_config(collect_style_values(parsed))
    song = SongMetadata(title=parsed.title, artist=parsed.artist)

    if parsed.render_workers <= 0:
        raise RenderValidationError(
            INVALID_CONFIG_CODE, "render-workers must be positive"
        )
    if parsed.preview_at is not None and parsed.preview_output is None:
        raise RenderValidationError(
            INVALID_CONFIG_CODE, "preview-at requires preview-output"
        )

    if parsed.srt_output is not None:
        mode = RenderMode.SRT
        output_path = parsed.srt_output or build_srt_file_name(parsed.title)
    elif parsed.preview_output is not None:
        mode = RenderMode.PREVIEW
        output_path = parsed.preview_output
        if parsed.preview_at is None:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "preview-output requires preview-at"
            )
        if parsed.preview_at < 0:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "preview-at must be non-negative"
            )
        if not parsed.background_image:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "preview requires background-image"
            )
    else:
        mode = RenderMode.VIDEO
        output_path = parsed.output_video_file or build_video_file_name(
            parsed.title or "lyrics"
        )
        if not parsed.audio or not parsed.background_image:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "video export requires audio and background-image"
            )
        if not output_path.lower().endswith(".mp4"):
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "output_video_file must end with .mp4"
            )

    if parsed.audio_duration_seconds is not None and parsed.audio_duration_seconds <= 0:
        raise RenderValidationError(
            INVALID_CONFIG_CODE, "audio-duration-seconds must be positive"
        )

    return RenderRequest(
        mode=mode,
        events=events,
        style=style,
        song=song,
        output_path=output_path,
        audio_source=parsed.audio,
        background_source=parsed.background_image,
        audio_duration_seconds=parsed.audio_duration_seconds,
        fonts_dir=parsed.fonts_dir,
        render_workers=parsed.render_workers,
        preview_time_seconds=parsed.preview_at,
    )


def current_umask() -> int:
    """Read the process umask (os.umask only reports it by replacing it)."""
    umask_value = os.umask(0)
    os.umask(umask_value)
    return umask_value


def write_bytes_atomically(target_path: str, data: bytes) -> None:
    """Write bytes via a sibling temp file so readers never see partial output."""
    target_dir = os.path.dirname(os.path.abspath(target_path))
    temp_path = None
    try:
        with tempfile.NamedTemporaryFile(
            dir=target_dir, prefix=".", suffix=".part", delete=False
        ) as file_handle:
            temp_path = file_handle.name
            file_handle.write(data)
        # temp files are created 0600; published output follows the umask
        os.chmod(temp_path, OUTPUT_FILE_MODE & ~current_umask())
        os.replace(temp_path, target_path)
    except OSError as exc:
        if temp_path is not None and os.path.exists(temp_path):
            os.unlink(temp_path)
        raise RenderPipelineError(
            OUTPUT_WRITE_CODE, f"failed to write output: {target_path}"
        ) from exc


class ProgressLogger:
    """Log export progress on state changes and every PROGRESS_LOG_STEP percent."""

    def __init__(self) -> None:
        self._next_percent = PROGRESS_LOG_STEP
        self._last_state: ExportState | None = None

    def __call__(self, progress: ExportProgress) -> None:
        if progress.state != self._last_state:
            self._last_state = progress.state
            if progress.state == ExportState.FAILED:
                return
            LOGGER.info("%s: %s", progress.state.value, progress.message)
            return
        if progress.percent >= self._next_percent:
            LOGGER.info("%s: %.0f%%", progress.state.value, progress.percent)
            while self._next_percent <= progress.percent:
                self._next_percent += PROGRESS_LOG_STEP


def build_font_catalog(fonts_dir: str | None) -> FontCatalog:
    """Load fonts from a directory, or fall back to Pillow's bundled font."""
    if fonts_dir is None:
        LOGGER.warning(
            "render_lyric_video.input.fonts_default: no fonts-dir given; "
            "using the bundled default font"
        )
        return FontCatalog()
    return FontCatalog.from_directory(fonts_dir)


def export_srt(request: RenderRequest) -> None:
    """Write the timeline as an SRT file."""
    srt_text = format_srt(request.events)
    write_bytes_atomically(request.output_path, srt_text.encode("utf-8"))
    LOGGER.info("wrote %d lyrics to %s", len(request.events), request.output_path)


def export_preview_frame(request: RenderRequest) -> None:
    """Render one live-preview frame at the requested time as PNG."""
    background = load_background_image(request.background_source or "")
    compositor = FrameCompositor(
        request.style, background, request.song, build_font_catalog(request.fonts_dir)
    )
    driver = LivePreviewDriver(request.events, ManualClock(), compositor)
    driver.seek(request.preview_time_seconds or 0.0)
    write_bytes_atomically(request.output_path, encode_png(driver.render()))
    LOGGER.info(
        "wrote preview at %.3fs to %s",
        request.preview_time_seconds or 0.0,
        request.output_path,
    )


def export_video(request: RenderRequest) -> None:
    """Render, mux and write the lyric video."""
    audio_source = request.audio_source or ""
    audio_duration = request.audio_duration_seconds
    if audio_duration is None:
        audio_duration = probe_audio_duration(audio_source)
    total_frames = compute_total_frames(audio_duration, FRAME_RATE)
    LOGGER.info(
        "exporting %d frames at %d fps (%s, expected %.2fs)",
        total_frames,
        FRAME_RATE,
        request.style.resolution,
        compute_muxed_duration(total_frames / FRAME_RATE, audio_duration),
    )

    exporter = LyricVideoExporter(
        fonts=build_font_catalog(request.fonts_dir),
        render_workers=request.render_workers,
        progress_callback=ProgressLogger(),
    )
    video_bytes = exporter.export(
        request.events,
        request.style,
        ExportAssets(
            audio_source=audio_source,
            background_source=request.background_source or "",
            audio_duration_seconds=audio_duration,
        ),
        request.song,
    )
    write_bytes_atomically(request.output_path, video_bytes)
    LOGGER.info("wrote %s", request.output_path)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint."""
    configure_logging(os.environ)

    try:
        request = parse_args(sys.argv[1:] if argv is None else argv)
        if request.mode == RenderMode.SRT:
            export_srt(request)
        elif request.mode == RenderMode.PREVIEW:
            export_preview_frame(request)
        else:
            export_video(request)
        return 0
    except RenderValidationError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except RenderPipelineError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except Exception as exc:
        LOGGER.error("render_lyric_video.unhandled_error: %s", str(exc).strip())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
