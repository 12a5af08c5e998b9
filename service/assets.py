"""Asset reading and probing for render_lyric_video."""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
import os
import shutil
import subprocess
from urllib.error import URLError
from urllib.parse import urlparse
from urllib.request import urlopen

from PIL import Image

from domain.lyric_video import INVALID_CONFIG_CODE, RenderPipelineError, RenderValidationError

ASSET_FETCH_CODE = "render_lyric_video.asset.fetch_failed"
ASSET_DECODE_CODE = "render_lyric_video.asset.decode_failed"
FFPROBE_NOT_FOUND_CODE = "render_lyric_video.ffprobe.not_found"
FFPROBE_EXEC_CODE = "render_lyric_video.ffprobe.exec_error"
FFPROBE_PROCESS_CODE = "render_lyric_video.ffprobe.probe_error"
URL_SCHEMES = ("http", "https")
FETCH_TIMEOUT_SECONDS = 60.0
DEFAULT_AUDIO_SUFFIX = ".mp3"


@dataclass(frozen=True)
class ExportAssets:
    """Where to read the audio and background from, plus the audio length."""

    audio_source: str
    background_source: str
    audio_duration_seconds: float

    def __post_init__(self) -> None:
        if not self.audio_source.strip():
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "audio_source must be non-empty"
            )
        if not self.background_source.strip():
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "background_source must be non-empty"
            )
        if self.audio_duration_seconds <= 0:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "audio_duration_seconds must be positive"
            )


def is_url(source: str) -> bool:
    """Return True when the source is an http(s) URL."""
    return urlparse(source).scheme.lower() in URL_SCHEMES


def source_suffix(source: str, fallback: str) -> str:
    """Return the file extension of a path or URL, or the fallback."""
    path_value = urlparse(source).path if is_url(source) else source
    suffix = os.path.splitext(path_value)[1].lower()
    return suffix or fallback


def read_asset_bytes(source: str) -> bytes:
    """Read an asset from a local path or an http(s) URL."""
    if is_url(source):
        try:
            with urlopen(source, timeout=FETCH_TIMEOUT_SECONDS) as response:
                return response.read()
        except (URLError, OSError, ValueError) as exc:
            raise RenderPipelineError(
                ASSET_FETCH_CODE, f"failed to fetch asset: {source} ({exc})"
            ) from exc
    try:
        with open(source, "rb") as file_handle:
            return file_handle.read()
    except OSError as exc:
        raise RenderPipelineError(
            ASSET_FETCH_CODE, f"failed to read asset: {source}"
        ) from exc


def decode_background_image(image_bytes: bytes, source: str) -> Image.Image:
    """Decode background image bytes as RGBA."""
    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()
    except Exception as exc:
        raise RenderPipelineError(
            ASSET_DECODE_CODE, f"failed to decode background image: {source}"
        ) from exc
    if image.mode != "RGBA":
        image = image.convert("RGBA")
    return image


def load_background_image(source: str) -> Image.Image:
    """Read and decode a background image."""
    return decode_background_image(read_asset_bytes(source), source)


def ensure_ffprobe_available() -> str:
    """Ensure ffprobe is installed and executable; return its path."""
    ffprobe_path = shutil.which("ffprobe")
    if not ffprobe_path:
        raise RenderPipelineError(FFPROBE_NOT_FOUND_CODE, "ffprobe not on PATH")
    try:
        subprocess.run(
            [ffprobe_path, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
    except Exception as exc:
        raise RenderPipelineError(
            FFPROBE_EXEC_CODE, "ffprobe exists but could not be executed"
        ) from exc
    return ffprobe_path


def probe_audio_duration(audio_source: str) -> float:
    """Return the audio duration in seconds for a path or URL."""
    if not is_url(audio_source) and not os.path.isfile(audio_source):
        raise RenderPipelineError(
            ASSET_FETCH_CODE, f"audio track not found: {audio_source}"
        )
    ffprobe_path = ensure_ffprobe_available()
    result = subprocess.run(
        [
            ffprobe_path,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            audio_source,
        ],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        stderr_text = result.stderr.strip()
        raise RenderPipelineError(
            FFPROBE_PROCESS_CODE,
            f"ffprobe failed for audio track: {stderr_text}",
        )
    try:
        duration_seconds = float(result.stdout.strip())
    except ValueError as exc:
        raise RenderPipelineError(
            ASSET_DECODE_CODE, f"audio track duration unavailable: {audio_source}"
        ) from exc
    if duration_seconds <= 0:
        raise RenderPipelineError(
            ASSET_DECODE_CODE, f"audio track duration invalid: {audio_source}"
        )
    return duration_seconds
