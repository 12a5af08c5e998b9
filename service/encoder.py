"""Encoder capability used by the export pipeline."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from typing import Protocol, Sequence

from domain.lyric_video import RenderPipelineError

LOGGER = logging.getLogger("render_lyric_video.encoder")

FFMPEG_NOT_FOUND_CODE = "render_lyric_video.ffmpeg.not_found"
FFMPEG_EXEC_CODE = "render_lyric_video.ffmpeg.exec_error"
FFMPEG_UNSUPPORTED_CODE = "render_lyric_video.ffmpeg.unsupported"
FFMPEG_PROCESS_CODE = "render_lyric_video.ffmpeg.process_failed"
ENCODER_STATE_CODE = "render_lyric_video.encoder.invalid_state"
ENCODER_IO_CODE = "render_lyric_video.encoder.io_error"

H264_CODEC = "libx264"
H264_PIXEL_FORMAT = "yuv420p"
AUDIO_CODEC = "aac"
AUDIO_BITRATE = "192k"
STDERR_TAIL_CHARS = 2000


class Encoder(Protocol):
    """Opaque video/audio muxing capability.

    Inputs and outputs are addressed by bare file names inside the encoder's
    own working area.
    """

    def load(self) -> None: ...

    def write_input(self, name: str, data: bytes) -> None: ...

    def run(self, args: Sequence[str]) -> None: ...

    def read_output(self, name: str) -> bytes: ...

    def close(self) -> None: ...


def ensure_ffmpeg_available() -> str:
    """Ensure ffmpeg is installed and executable; return its path."""
    ffmpeg_path = shutil.which("ffmpeg")
    if not ffmpeg_path:
        raise RenderPipelineError(FFMPEG_NOT_FOUND_CODE, "ffmpeg not on PATH")
    try:
        subprocess.run(
            [ffmpeg_path, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
    except Exception as exc:
        raise RenderPipelineError(
            FFMPEG_EXEC_CODE, "ffmpeg exists but could not be executed"
        ) from exc
    return ffmpeg_path


def validate_ffmpeg_capabilities(ffmpeg_path: str) -> None:
    """Validate that ffmpeg can encode H.264 video and AAC audio."""
    encoders_result = subprocess.run(
        [ffmpeg_path, "-hide_banner", "-encoders"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=True,
    )
    for encoder_name in (H264_CODEC, AUDIO_CODEC):
        if encoder_name not in encoders_result.stdout:
            raise RenderPipelineError(
                FFMPEG_UNSUPPORTED_CODE,
                f"ffmpeg does not support {encoder_name} encoder",
            )


class FfmpegEncoder:
    """Encoder backed by the ffmpeg executable and a scratch directory."""

    def __init__(self, scratch_root: str | None = None) -> None:
        self._scratch_root = scratch_root
        self._ffmpeg_path: str | None = None
        self._workdir: str | None = None

    def __enter__(self) -> "FfmpegEncoder":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def workdir(self) -> str | None:
        return self._workdir

    def load(self) -> None:
        if self._workdir is not None:
            return
        ffmpeg_path = ensure_ffmpeg_available()
        try:
            validate_ffmpeg_capabilities(ffmpeg_path)
        except subprocess.CalledProcessError as exc:
            raise RenderPipelineError(
                FFMPEG_EXEC_CODE, "ffmpeg capability query failed"
            ) from exc
        self._ffmpeg_path = ffmpeg_path
        self._workdir = tempfile.mkdtemp(
            prefix="render_lyric_video-", dir=self._scratch_root
        )
        LOGGER.debug("encoder scratch directory: %s", self._workdir)

    def _path_for(self, name: str) -> str:
        if self._workdir is None:
            raise RenderPipelineError(ENCODER_STATE_CODE, "encoder is not loaded")
        if os.path.basename(name) != name:
            raise RenderPipelineError(
                ENCODER_IO_CODE, f"encoder file names must be bare: {name!r}"
            )
        return os.path.join(self._workdir, name)

    def write_input(self, name: str, data: bytes) -> None:
        target_path = self._path_for(name)
        try:
            with open(target_path, "wb") as file_handle:
                file_handle.write(data)
        except OSError as exc:
            raise RenderPipelineError(
                ENCODER_IO_CODE, f"failed to write encoder input {name}"
            ) from exc

    def run(self, args: Sequence[str]) -> None:
        if self._workdir is None or self._ffmpeg_path is None:
            raise RenderPipelineError(ENCODER_STATE_CODE, "encoder is not loaded")
        ffmpeg_cmd = [self._ffmpeg_path, "-hide_banner", "-y", *args]
        LOGGER.debug("running %s", " ".join(ffmpeg_cmd))
        try:
            result = subprocess.run(
                ffmpeg_cmd,
                cwd=self._workdir,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                check=False,
            )
        except OSError as exc:
            raise RenderPipelineError(FFMPEG_NOT_FOUND_CODE, "ffmpeg not found") from exc
        if result.returncode != 0:
            stderr_text = result.stderr.decode("utf-8", errors="replace").strip()
            raise RenderPipelineError(
                FFMPEG_PROCESS_CODE,
                f"ffmpeg failed with exit code {result.returncode}. "
                f"{stderr_text[-STDERR_TAIL_CHARS:]}",
            )

    def read_output(self, name: str) -> bytes:
        target_path = self._path_for(name)
        try:
            with open(target_path, "rb") as file_handle:
                return file_handle.read()
        except OSError as exc:
            raise RenderPipelineError(
                ENCODER_IO_CODE, f"encoder output missing: {name}"
            ) from exc

    def close(self) -> None:
        if self._workdir is not None:
            shutil.rmtree(self._workdir, ignore_errors=True)
            self._workdir = None
