"""Frame compositing for render_lyric_video."""

from __future__ import annotations

from io import BytesIO
import logging
import os
import re
from typing import Sequence, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFilter, ImageFont, ImageOps

from domain.lyric_video import (
    COLOR_THEMES,
    FONT_DIR_CODE,
    FONT_LOAD_CODE,
    AlbumArtPosition,
    LyricPosition,
    RenderValidationError,
    SongMetadata,
    StyleConfig,
    TextAlignment,
    parse_hex_color_to_rgba,
)
from service.fade_envelope import FadeEnvelope

LOGGER = logging.getLogger("render_lyric_video.compositor")

BASE_RGBA = (17, 24, 39, 255)
DIM_OVERLAY_RGBA = (0, 0, 0, 102)
ALBUM_ART_BASELINE_SIZE = 150.0
ALBUM_ART_HEIGHT_RATIO = 0.25
ALBUM_ART_MARGIN_RATIO = 0.05
ALBUM_ART_BORDER_RGBA = (255, 255, 255, 51)
ALBUM_ART_BORDER_WIDTH = 2
LYRIC_MARGIN_RATIO = 0.05
LYRIC_Y_RATIOS = {
    LyricPosition.TOP: 0.25,
    LyricPosition.CENTER: 0.5,
    LyricPosition.BOTTOM: 0.8,
}
LYRIC_ANCHORS = {
    TextAlignment.LEFT: "lm",
    TextAlignment.CENTER: "mm",
    TextAlignment.RIGHT: "rm",
}
TITLE_FONT_RATIO = 0.04
TITLE_Y_RATIO = 0.92
TITLE_FONT_WEIGHT = 700
ARTIST_FONT_RATIO = 0.025
ARTIST_Y_RATIO = 0.97
ARTIST_FONT_WEIGHT = 400
SONG_INFO_THEME = "light"
FRAME_PNG_COMPRESS_LEVEL = 1

FONT_FILE_SUFFIXES = (".ttf", ".otf")
DEFAULT_FONT_WEIGHT = 400
# longest keywords first so "extrabold" wins over "bold"
WEIGHT_KEYWORDS = (
    ("extralight", 200),
    ("ultralight", 200),
    ("extrabold", 800),
    ("ultrabold", 800),
    ("semibold", 600),
    ("demibold", 600),
    ("hairline", 100),
    ("regular", 400),
    ("medium", 500),
    ("light", 300),
    ("black", 900),
    ("heavy", 900),
    ("thin", 100),
    ("book", 400),
    ("bold", 700),
)
GENERIC_FAMILY_TOKENS = {
    "sansserif": (("sans",), ("serif",)),
    "serif": (("serif",), ("sans",)),
    "monospace": (("mono", "code"), ()),
    "cursive": (("script", "hand", "cursive", "brush"), ()),
}


def normalize_font_name(value: str) -> str:
    """Lowercase a font or file name and drop non-alphanumerics."""
    return re.sub(r"[^a-z0-9]", "", value.lower())


def parse_font_families(font_family: str) -> Tuple[str, ...]:
    """Split a CSS font-family list into unquoted family names."""
    families = []
    for raw_family in font_family.split(","):
        family = raw_family.strip().strip("'\"").strip()
        if family:
            families.append(family)
    return tuple(families)


def infer_font_weight(file_name: str) -> int:
    """Infer a numeric weight from keywords in a font file name."""
    normalized = normalize_font_name(os.path.splitext(os.path.basename(file_name))[0])
    for keyword, weight in WEIGHT_KEYWORDS:
        if keyword in normalized:
            return weight
    return DEFAULT_FONT_WEIGHT


def list_font_files(fonts_dir: str) -> list[str]:
    """List font files from the fonts directory."""
    if not os.path.isdir(fonts_dir):
        raise RenderValidationError(
            FONT_DIR_CODE, f"fonts directory does not exist: {fonts_dir}"
        )

    font_files: list[str] = []
    for entry_name in sorted(os.listdir(fonts_dir)):
        if entry_name.lower().endswith(FONT_FILE_SUFFIXES):
            font_files.append(os.path.join(fonts_dir, entry_name))

    if not font_files:
        raise RenderValidationError(
            FONT_DIR_CODE,
            f"no font files found in {fonts_dir}",
        )
    return font_files


class FontCatalog:
    """Resolves CSS-style family and weight requests to loaded fonts."""

    def __init__(self, font_files: Sequence[str] = ()) -> None:
        self._font_files = tuple(font_files)
        self._cache: dict[Tuple[str, int], ImageFont.FreeTypeFont] = {}
        self._default_cache: dict[int, ImageFont.FreeTypeFont | ImageFont.ImageFont] = {}

    @classmethod
    def from_directory(cls, fonts_dir: str) -> "FontCatalog":
        return cls(list_font_files(fonts_dir))

    @property
    def font_files(self) -> Tuple[str, ...]:
        return self._font_files

    def _matches_family(self, file_path: str, family: str) -> bool:
        stem = normalize_font_name(os.path.splitext(os.path.basename(file_path))[0])
        normalized_family = normalize_font_name(family)
        generic = GENERIC_FAMILY_TOKENS.get(normalized_family)
        if generic is None:
            return bool(normalized_family) and normalized_family in stem
        include_tokens, exclude_tokens = generic
        if any(token in stem for token in exclude_tokens):
            return False
        return any(token in stem for token in include_tokens)

    def select_file(self, font_family: str, font_weight: int) -> str | None:
        """Pick the closest-weight font file for the first matching family."""
        if not self._font_files:
            return None
        candidates: list[str] = []
        for family in parse_font_families(font_family):
            candidates = [
                file_path
                for file_path in self._font_files
                if self._matches_family(file_path, family)
            ]
            if candidates:
                break
        if not candidates:
            LOGGER.debug(
                "no font file matches %r; choosing by weight only", font_family
            )
            candidates = list(self._font_files)
        return min(
            candidates,
            key=lambda file_path: abs(infer_font_weight(file_path) - font_weight),
        )

    def load(
        self, font_family: str, font_weight: int, font_size: float
    ) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
        """Load a font for a family, weight and pixel size."""
        pixel_size = max(1, int(round(font_size)))
        file_path = self.select_file(font_family, font_weight)
        if file_path is None:
            cached_default = self._default_cache.get(pixel_size)
            if cached_default is None:
                cached_default = ImageFont.load_default(size=pixel_size)
                self._default_cache[pixel_size] = cached_default
            return cached_default

        cache_key = (file_path, pixel_size)
        cached_font = self._cache.get(cache_key)
        if cached_font is not None:
            return cached_font
        try:
            font = ImageFont.truetype(
                file_path, size=pixel_size, layout_engine=ImageFont.Layout.BASIC
            )
        except Exception as exc:
            raise RenderValidationError(
                FONT_LOAD_CODE, f"failed to load font {file_path} at size {pixel_size}"
            ) from exc
        self._cache[cache_key] = font
        return font


def compute_album_art_box(
    width: int, height: int, style: StyleConfig
) -> Tuple[int, int, int] | None:
    """Return (x, y, size) of the album art square, or None when hidden."""
    if style.album_art_position == AlbumArtPosition.HIDDEN:
        return None
    art_size = (style.album_art_size / ALBUM_ART_BASELINE_SIZE) * (
        height * ALBUM_ART_HEIGHT_RATIO
    )
    if style.album_art_position == AlbumArtPosition.LEFT:
        art_x = width * ALBUM_ART_MARGIN_RATIO
    else:
        art_x = width * (1 - ALBUM_ART_MARGIN_RATIO) - art_size
    art_y = height * ALBUM_ART_MARGIN_RATIO
    return int(round(art_x)), int(round(art_y)), max(1, int(round(art_size)))


def compute_lyric_anchor(
    width: int, height: int, style: StyleConfig
) -> Tuple[float, float, str]:
    """Return the lyric anchor point and Pillow anchor code."""
    if style.text_alignment == TextAlignment.LEFT:
        anchor_x = width * LYRIC_MARGIN_RATIO
    elif style.text_alignment == TextAlignment.RIGHT:
        anchor_x = width * (1 - LYRIC_MARGIN_RATIO)
    else:
        anchor_x = width / 2
    anchor_y = height * LYRIC_Y_RATIOS[style.lyric_position]
    return anchor_x, anchor_y, LYRIC_ANCHORS[style.text_alignment]


def apply_opacity(layer: Image.Image, opacity: float) -> Image.Image:
    """Scale the alpha channel of an RGBA layer."""
    if opacity >= 1.0:
        return layer
    pixels = np.array(layer, dtype=np.float32)
    pixels[..., 3] *= max(0.0, opacity)
    return Image.fromarray(np.clip(np.rint(pixels), 0, 255).astype(np.uint8))


def fill_base(surface: Image.Image) -> None:
    surface.paste(BASE_RGBA, (0, 0, surface.width, surface.height))


def draw_background(
    surface: Image.Image, background: Image.Image, blur_radius: float
) -> None:
    """Stretch the background over the surface and blur it."""
    scaled = background.convert("RGBA").resize(
        surface.size, Image.Resampling.LANCZOS
    )
    if blur_radius > 0:
        scaled = scaled.filter(ImageFilter.GaussianBlur(radius=blur_radius))
    surface.alpha_composite(scaled)


def draw_dim_overlay(surface: Image.Image) -> None:
    surface.alpha_composite(Image.new("RGBA", surface.size, DIM_OVERLAY_RGBA))


def draw_album_art(
    surface: Image.Image, background: Image.Image, style: StyleConfig
) -> None:
    """Draw the cover-cropped album art square with its border."""
    art_box = compute_album_art_box(surface.width, surface.height, style)
    if art_box is None:
        return
    art_x, art_y, art_size = art_box
    art_image = ImageOps.fit(
        background.convert("RGBA"), (art_size, art_size), Image.Resampling.LANCZOS
    )
    surface.alpha_composite(art_image, dest=(art_x, art_y))

    border_layer = Image.new("RGBA", surface.size, (0, 0, 0, 0))
    half_border = ALBUM_ART_BORDER_WIDTH // 2
    ImageDraw.Draw(border_layer).rectangle(
        (
            art_x - half_border,
            art_y - half_border,
            art_x + art_size + half_border - 1,
            art_y + art_size + half_border - 1,
        ),
        outline=ALBUM_ART_BORDER_RGBA,
        width=ALBUM_ART_BORDER_WIDTH,
    )
    surface.alpha_composite(border_layer)


def draw_lyric(
    surface: Image.Image,
    text_value: str,
    envelope: FadeEnvelope,
    style: StyleConfig,
    fonts: FontCatalog,
) -> None:
    """Draw a lyric line with the envelope's opacity and offset."""
    if envelope.opacity <= 0 or not text_value.strip():
        return
    font = fonts.load(style.font_family, style.font_weight, style.font_size)
    anchor_x, anchor_y, anchor = compute_lyric_anchor(
        surface.width, surface.height, style
    )
    text_layer = Image.new("RGBA", surface.size, (0, 0, 0, 0))
    ImageDraw.Draw(text_layer).text(
        (anchor_x, anchor_y + envelope.vertical_offset_px),
        text_value,
        font=font,
        fill=style.active_color,
        anchor=anchor,
        align=style.text_alignment.value,
    )
    surface.alpha_composite(apply_opacity(text_layer, envelope.opacity))


def draw_song_info(
    surface: Image.Image, song: SongMetadata, style: StyleConfig, fonts: FontCatalog
) -> None:
    """Draw the centered title and artist footer."""
    theme = COLOR_THEMES[SONG_INFO_THEME]
    draw_context = ImageDraw.Draw(surface)
    center_x = surface.width / 2
    title_font = fonts.load(
        style.font_family, TITLE_FONT_WEIGHT, surface.height * TITLE_FONT_RATIO
    )
    draw_context.text(
        (center_x, surface.height * TITLE_Y_RATIO),
        song.title,
        font=title_font,
        fill=parse_hex_color_to_rgba(theme.info),
        anchor="mm",
    )
    artist_font = fonts.load(
        style.font_family, ARTIST_FONT_WEIGHT, surface.height * ARTIST_FONT_RATIO
    )
    draw_context.text(
        (center_x, surface.height * ARTIST_Y_RATIO),
        song.artist,
        font=artist_font,
        fill=parse_hex_color_to_rgba(theme.sub_info),
        anchor="mm",
    )


def draw_backdrop(
    surface: Image.Image, style: StyleConfig, background: Image.Image
) -> None:
    """Draw the time-independent layers: base, blurred background, dim, album art."""
    fill_base(surface)
    draw_background(surface, background, style.background_blur)
    draw_dim_overlay(surface)
    draw_album_art(surface, background, style)


def composite_frame(
    surface: Image.Image,
    style: StyleConfig,
    background: Image.Image,
    lyric_text: str | None,
    envelope: FadeEnvelope | None,
    song: SongMetadata,
    show_song_info: bool,
    fonts: FontCatalog,
) -> None:
    """Draw one complete frame onto an RGBA surface."""
    draw_backdrop(surface, style, background)
    if lyric_text is not None and envelope is not None:
        draw_lyric(surface, lyric_text, envelope, style, fonts)
    if show_song_info:
        draw_song_info(surface, song, style, fonts)


def encode_png(surface: Image.Image) -> bytes:
    """Serialize a surface as PNG bytes."""
    buffer = BytesIO()
    surface.save(buffer, format="PNG", compress_level=FRAME_PNG_COMPRESS_LEVEL)
    return buffer.getvalue()


class FrameCompositor:
    """Per-run compositor that reuses the time-independent backdrop.

    The backdrop depends only on the style and the background image, so it is
    drawn once and each frame starts from a copy of it. Calls to ``render``
    share no mutable state and may run from several threads.
    """

    def __init__(
        self,
        style: StyleConfig,
        background: Image.Image,
        song: SongMetadata,
        fonts: FontCatalog,
    ) -> None:
        self.style = style
        self.song = song
        self.fonts = fonts
        self.frame_size = style.frame_size
        backdrop = Image.new("RGBA", self.frame_size, BASE_RGBA)
        draw_backdrop(backdrop, style, background)
        self._backdrop = backdrop

    def render(
        self, lyric_text: str | None, envelope: FadeEnvelope | None
    ) -> Image.Image:
        surface = self._backdrop.copy()
        if lyric_text is not None and envelope is not None:
            draw_lyric(surface, lyric_text, envelope, self.style, self.fonts)
        if self.style.show_song_info:
            draw_song_info(surface, self.song, self.style, self.fonts)
        return surface

    def render_png(
        self, lyric_text: str | None, envelope: FadeEnvelope | None
    ) -> bytes:
        return encode_png(self.render(lyric_text, envelope))
