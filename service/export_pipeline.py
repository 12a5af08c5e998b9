"""Offline lyric video export: frame enumeration, encoding and muxing."""

from __future__ import annotations

from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Callable, Iterator, Sequence, Tuple

from PIL import Image

from domain.lyric_video import (
    EMPTY_TIMELINE_CODE,
    INVALID_CONFIG_CODE,
    LyricEvent,
    RenderPipelineError,
    RenderValidationError,
    SongMetadata,
    StyleConfig,
)
from service.assets import (
    DEFAULT_AUDIO_SUFFIX,
    ExportAssets,
    load_background_image,
    read_asset_bytes,
    source_suffix,
)
from service.compositor import FontCatalog, FrameCompositor
from service.encoder import (
    AUDIO_BITRATE,
    AUDIO_CODEC,
    H264_CODEC,
    H264_PIXEL_FORMAT,
    Encoder,
    FfmpegEncoder,
)
from service.fade_envelope import compute_export_envelope
from service.render_plan import FRAME_RATE, RenderPlan, build_render_plan
from service.timeline import active_event

LOGGER = logging.getLogger("render_lyric_video.export")

ENCODER_LOAD_CODE = "render_lyric_video.export.encoder_load"
ASSET_READ_CODE = "render_lyric_video.export.asset_read"
FRAME_RENDER_CODE = "render_lyric_video.export.frame_render"
MUX_CODE = "render_lyric_video.export.mux"
EXPORT_FAILED_CODE = "render_lyric_video.export.failed"

AUDIO_INPUT_STEM = "audio"
OUTPUT_FILE_NAME = "output.mp4"
RENDER_WINDOW_PER_WORKER = 2


class ExportState(str, Enum):
    """Lifecycle of one export run."""

    IDLE = "idle"
    LOADING_ENCODER = "loading_encoder"
    READING_ASSETS = "reading_assets"
    RENDERING_FRAMES = "rendering_frames"
    MUXING = "muxing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class ExportProgress:
    """Progress notification emitted by the exporter."""

    state: ExportState
    percent: float
    message: str


ProgressCallback = Callable[[ExportProgress], None]


def build_mux_args(
    plan: RenderPlan, audio_name: str, output_name: str = OUTPUT_FILE_NAME
) -> Tuple[str, ...]:
    """Build encoder arguments that mux frames and audio, stopping at the shorter."""
    return (
        "-framerate",
        str(plan.fps),
        "-i",
        plan.frame_pattern,
        "-i",
        audio_name,
        "-map",
        "0:v:0",
        "-map",
        "1:a:0",
        "-c:v",
        H264_CODEC,
        "-c:a",
        AUDIO_CODEC,
        "-b:a",
        AUDIO_BITRATE,
        "-shortest",
        "-pix_fmt",
        H264_PIXEL_FORMAT,
        "-movflags",
        "+faststart",
        output_name,
    )


def render_frame_png(
    index_value: int,
    plan: RenderPlan,
    events: Sequence[LyricEvent],
    compositor: FrameCompositor,
) -> bytes:
    """Render one frame by index; depends on nothing but its arguments."""
    sample = plan.sample(index_value)
    event = active_event(events, sample.time_seconds)
    if event is None:
        return compositor.render_png(None, None)
    envelope = compute_export_envelope(
        event.duration_seconds, sample.time_seconds - event.start_seconds
    )
    return compositor.render_png(event.text, envelope)


def iter_rendered_frames(
    render_one: Callable[[int], bytes],
    total_frames: int,
    executor: ThreadPoolExecutor,
    window: int,
) -> Iterator[Tuple[int, bytes]]:
    """Render frames concurrently and yield them in ascending index order."""
    pending: deque[Tuple[int, Future[bytes]]] = deque()
    next_index = 0
    while next_index < total_frames and len(pending) < window:
        pending.append((next_index, executor.submit(render_one, next_index)))
        next_index += 1
    while pending:
        index_value, future = pending.popleft()
        frame_bytes = future.result()
        if next_index < total_frames:
            pending.append((next_index, executor.submit(render_one, next_index)))
            next_index += 1
        yield index_value, frame_bytes


class LyricVideoExporter:
    """Drives one export run from timeline to encoded video bytes."""

    def __init__(
        self,
        encoder_factory: Callable[[], Encoder] = FfmpegEncoder,
        fonts: FontCatalog | None = None,
        fps: int = FRAME_RATE,
        render_workers: int = 1,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        if render_workers <= 0:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "render_workers must be positive"
            )
        self._encoder_factory = encoder_factory
        self._fonts = fonts if fonts is not None else FontCatalog()
        self._fps = fps
        self._render_workers = render_workers
        self._progress_callback = progress_callback
        self.state = ExportState.IDLE
        self._percent = 0.0

    def _report(self, state: ExportState, percent: float, message: str) -> None:
        if state != self.state:
            LOGGER.info("export state: %s -> %s", self.state.value, state.value)
        self.state = state
        self._percent = percent
        if self._progress_callback is not None:
            self._progress_callback(
                ExportProgress(state=state, percent=percent, message=message)
            )

    def export(
        self,
        events: Sequence[LyricEvent],
        style: StyleConfig,
        assets: ExportAssets,
        song: SongMetadata,
    ) -> bytes:
        """Render every frame, mux with the audio and return the video bytes."""
        events = tuple(events)
        encoder: Encoder | None = None
        try:
            if not events:
                raise RenderValidationError(
                    EMPTY_TIMELINE_CODE, "no lyric events to render"
                )
            plan = build_render_plan(assets.audio_duration_seconds, self._fps)

            encoder = self._encoder_factory()
            self._report(ExportState.LOADING_ENCODER, 0.0, "loading encoder")
            self._load_encoder(encoder)

            self._report(ExportState.READING_ASSETS, 0.0, "reading media assets")
            audio_name, background = self._read_assets(encoder, assets)

            self._report(
                ExportState.RENDERING_FRAMES,
                0.0,
                f"rendering {plan.total_frames} frames",
            )
            self._render_frames(encoder, plan, events, style, background, song)

            self._report(ExportState.MUXING, 100.0, "muxing frames with audio")
            video_bytes = self._mux(encoder, plan, audio_name)

            self._report(ExportState.DONE, 100.0, "export complete")
            return video_bytes
        except Exception as exc:
            self._report(ExportState.FAILED, self._percent, str(exc).strip())
            if isinstance(exc, (RenderPipelineError, RenderValidationError)):
                raise
            raise RenderPipelineError(
                EXPORT_FAILED_CODE, f"export failed: {exc}"
            ) from exc
        finally:
            if encoder is not None:
                encoder.close()

    def _load_encoder(self, encoder: Encoder) -> None:
        try:
            encoder.load()
        except RenderPipelineError:
            raise
        except Exception as exc:
            raise RenderPipelineError(
                ENCODER_LOAD_CODE, f"failed to load encoder: {exc}"
            ) from exc

    def _read_assets(
        self, encoder: Encoder, assets: ExportAssets
    ) -> Tuple[str, Image.Image]:
        audio_bytes = read_asset_bytes(assets.audio_source)
        background = load_background_image(assets.background_source)
        audio_name = AUDIO_INPUT_STEM + source_suffix(
            assets.audio_source, DEFAULT_AUDIO_SUFFIX
        )
        try:
            encoder.write_input(audio_name, audio_bytes)
        except RenderPipelineError:
            raise
        except Exception as exc:
            raise RenderPipelineError(
                ASSET_READ_CODE, f"failed to stage audio: {exc}"
            ) from exc
        return audio_name, background

    def _render_frames(
        self,
        encoder: Encoder,
        plan: RenderPlan,
        events: Tuple[LyricEvent, ...],
        style: StyleConfig,
        background: Image.Image,
        song: SongMetadata,
    ) -> None:
        try:
            compositor = FrameCompositor(style, background, song, self._fonts)
        except RenderValidationError:
            raise
        except Exception as exc:
            raise RenderPipelineError(
                FRAME_RENDER_CODE, f"failed to prepare frame layers: {exc}"
            ) from exc

        def render_one(index_value: int) -> bytes:
            try:
                return render_frame_png(index_value, plan, events, compositor)
            except RenderValidationError:
                raise
            except Exception as exc:
                raise RenderPipelineError(
                    FRAME_RENDER_CODE, f"failed to render frame {index_value}: {exc}"
                ) from exc

        if self._render_workers == 1:
            rendered = (
                (index_value, render_one(index_value))
                for index_value in range(plan.total_frames)
            )
            self._submit_frames(encoder, plan, rendered)
            return

        executor = ThreadPoolExecutor(max_workers=self._render_workers)
        try:
            rendered = iter_rendered_frames(
                render_one,
                plan.total_frames,
                executor,
                self._render_workers * RENDER_WINDOW_PER_WORKER,
            )
            self._submit_frames(encoder, plan, rendered)
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    def _submit_frames(
        self,
        encoder: Encoder,
        plan: RenderPlan,
        rendered: Iterator[Tuple[int, bytes]],
    ) -> None:
        for index_value, frame_bytes in rendered:
            encoder.write_input(plan.frame_file_name(index_value), frame_bytes)
            completed = index_value + 1
            LOGGER.debug("frame %d/%d written", completed, plan.total_frames)
            self._report(
                ExportState.RENDERING_FRAMES,
                completed / plan.total_frames * 100,
                f"rendered frame {completed} / {plan.total_frames}",
            )

    def _mux(self, encoder: Encoder, plan: RenderPlan, audio_name: str) -> bytes:
        try:
            encoder.run(build_mux_args(plan, audio_name))
            return encoder.read_output(OUTPUT_FILE_NAME)
        except RenderPipelineError:
            raise
        except Exception as exc:
            raise RenderPipelineError(MUX_CODE, f"mux failed: {exc}") from exc
