"""Tests for frame compositing and font selection."""

from __future__ import annotations

from io import BytesIO
from pathlib import Path

from PIL import Image, ImageChops
import pytest

from domain.lyric_video import (
    FONT_DIR_CODE,
    AlbumArtPosition,
    LyricPosition,
    RenderValidationError,
    SongMetadata,
    StyleConfig,
    TextAlignment,
)
from service.compositor import (
    FontCatalog,
    FrameCompositor,
    apply_opacity,
    composite_frame,
    compute_album_art_box,
    compute_lyric_anchor,
    infer_font_weight,
    parse_font_families,
)
from service.fade_envelope import FadeEnvelope, VISIBLE

BACKGROUND_RGBA = (200, 0, 0, 255)
SONG = SongMetadata(title="Song Title", artist="Some Artist")


def build_style(**overrides: object) -> StyleConfig:
    """Build a sharp, footer-free style unless overridden."""
    values: dict[str, object] = {
        "background_blur": 0.0,
        "album_art_position": AlbumArtPosition.HIDDEN,
        "show_song_info": False,
    }
    values.update(overrides)
    return StyleConfig(**values)


def solid_background(size: tuple[int, int] = (32, 32)) -> Image.Image:
    """Return a solid-colour background image."""
    return Image.new("RGBA", size, BACKGROUND_RGBA)


def assert_close(pixel: tuple[int, ...], expected: tuple[int, ...], tolerance: int = 2) -> None:
    """Assert each channel is within tolerance."""
    for actual_value, expected_value in zip(pixel, expected):
        assert abs(actual_value - expected_value) <= tolerance, (pixel, expected)


def changed_region(
    first: Image.Image, second: Image.Image
) -> tuple[int, int, int, int] | None:
    """Bounding box of pixels that differ in any channel."""
    return ImageChops.difference(first, second).getbbox(alpha_only=False)


def test_backdrop_is_dimmed_background() -> None:
    """The background is stretched and darkened by the 40% overlay."""
    compositor = FrameCompositor(build_style(), solid_background(), SONG, FontCatalog())
    frame = compositor.render(None, None)
    assert frame.size == (1280, 720)
    assert_close(frame.getpixel((10, 10)), (120, 0, 0, 255))
    assert_close(frame.getpixel((1270, 710)), (120, 0, 0, 255))


def test_album_art_box_positions() -> None:
    """Album art scales with the frame height and sits in a top corner."""
    left = compute_album_art_box(1280, 720, build_style(album_art_position=AlbumArtPosition.LEFT))
    assert left == (64, 36, 180)
    right = compute_album_art_box(
        1280,
        720,
        build_style(album_art_position=AlbumArtPosition.RIGHT, album_art_size=300),
    )
    assert right == (1216 - 360, 36, 360)
    assert compute_album_art_box(1280, 720, build_style()) is None


def test_album_art_is_undimmed() -> None:
    """The album art square shows the background above the dim layer."""
    style = build_style(album_art_position=AlbumArtPosition.LEFT)
    compositor = FrameCompositor(style, solid_background(), SONG, FontCatalog())
    frame = compositor.render(None, None)
    assert_close(frame.getpixel((64 + 90, 36 + 90)), BACKGROUND_RGBA)
    border_pixel = frame.getpixel((64, 36))
    assert border_pixel[0] > 200
    assert border_pixel[1] > 0


def test_lyric_anchor_follows_position_and_alignment() -> None:
    """Anchor x follows alignment and anchor y follows position."""
    assert compute_lyric_anchor(1280, 720, build_style()) == (640.0, 360.0, "mm")
    assert compute_lyric_anchor(
        1280,
        720,
        build_style(text_alignment=TextAlignment.LEFT, lyric_position=LyricPosition.TOP),
    ) == (64.0, 180.0, "lm")
    assert compute_lyric_anchor(
        1280,
        720,
        build_style(
            text_alignment=TextAlignment.RIGHT, lyric_position=LyricPosition.BOTTOM
        ),
    ) == (1216.0, 576.0, "rm")


def test_lyric_is_drawn_near_its_anchor() -> None:
    """A visible lyric changes pixels around the centre of the frame."""
    compositor = FrameCompositor(build_style(), solid_background(), SONG, FontCatalog())
    empty = compositor.render(None, None)
    with_text = compositor.render("Hello", VISIBLE)
    bbox = changed_region(empty, with_text)
    assert bbox is not None
    left, top, right, bottom = bbox
    assert left < 640 < right
    assert top < 360 < bottom


def test_transparent_lyric_draws_nothing() -> None:
    """Zero opacity renders the same frame as no lyric at all."""
    compositor = FrameCompositor(build_style(), solid_background(), SONG, FontCatalog())
    empty = compositor.render(None, None)
    hidden = compositor.render("Hello", FadeEnvelope(0.0, 10.0))
    assert changed_region(empty, hidden) is None


def test_half_opacity_is_dimmer() -> None:
    """Half opacity text is fainter than fully opaque text."""
    compositor = FrameCompositor(build_style(), solid_background(), SONG, FontCatalog())
    full = compositor.render("Hello", VISIBLE).convert("L")
    half = compositor.render("Hello", FadeEnvelope(0.5, 0.0)).convert("L")
    assert full.getextrema()[1] > half.getextrema()[1]


def test_vertical_offset_moves_lyric() -> None:
    """The envelope offset shifts the lyric vertically."""
    compositor = FrameCompositor(build_style(), solid_background(), SONG, FontCatalog())
    empty = compositor.render(None, None)
    centred = changed_region(empty, compositor.render("Hello", VISIBLE))
    lowered = changed_region(empty, compositor.render("Hello", FadeEnvelope(1.0, 10.0)))
    assert centred is not None and lowered is not None
    assert lowered[1] - centred[1] == 10


def test_song_info_draws_footer() -> None:
    """Song info renders below the lyric area."""
    background = solid_background()
    empty = FrameCompositor(build_style(), background, SONG, FontCatalog()).render(
        None, None
    )
    with_info = FrameCompositor(
        build_style(show_song_info=True), background, SONG, FontCatalog()
    ).render(None, None)
    bbox = changed_region(empty, with_info)
    assert bbox is not None
    assert bbox[1] > 720 * 0.85


def test_compositor_matches_full_composite() -> None:
    """The cached backdrop gives the same frame as compositing from scratch."""
    style = build_style(album_art_position=AlbumArtPosition.RIGHT, background_blur=4.0)
    background = solid_background((48, 24))
    fonts = FontCatalog()
    compositor = FrameCompositor(style, background, SONG, fonts)
    envelope = FadeEnvelope(0.75, 2.5)

    surface = Image.new("RGBA", style.frame_size)
    composite_frame(surface, style, background, "Line", envelope, SONG, False, fonts)

    assert changed_region(surface, compositor.render("Line", envelope)) is None


def test_render_png_is_decodable() -> None:
    """PNG frames decode to the frame size."""
    compositor = FrameCompositor(build_style(), solid_background(), SONG, FontCatalog())
    png_bytes = compositor.render_png("Hello", VISIBLE)
    with Image.open(BytesIO(png_bytes)) as decoded:
        assert decoded.size == (1280, 720)


def test_apply_opacity_scales_alpha() -> None:
    """Opacity multiplies the alpha channel only."""
    layer = Image.new("RGBA", (2, 2), (10, 20, 30, 200))
    assert apply_opacity(layer, 0.5).getpixel((0, 0)) == (10, 20, 30, 100)
    assert apply_opacity(layer, 1.0) is layer


def test_parse_font_families() -> None:
    """CSS family lists are split and unquoted."""
    assert parse_font_families("'Open Sans', \"Inter\", sans-serif") == (
        "Open Sans",
        "Inter",
        "sans-serif",
    )


def test_infer_font_weight() -> None:
    """Weight keywords in file names map to numeric weights."""
    assert infer_font_weight("Inter-ExtraBold.ttf") == 800
    assert infer_font_weight("Inter-Bold.ttf") == 700
    assert infer_font_weight("Inter-SemiBold.otf") == 600
    assert infer_font_weight("Inter-Light.ttf") == 300
    assert infer_font_weight("Inter.ttf") == 400


def test_font_catalog_selects_family_and_weight(tmp_path: Path) -> None:
    """The first matching family wins and the closest weight is chosen."""
    for file_name in (
        "Inter-Regular.ttf",
        "Inter-Bold.ttf",
        "NotoSerif-Regular.ttf",
        "NotoSans-Light.ttf",
        "readme.txt",
    ):
        (tmp_path / file_name).write_bytes(b"")
    catalog = FontCatalog.from_directory(str(tmp_path))
    assert len(catalog.font_files) == 4

    def selected(font_family: str, font_weight: int) -> str:
        file_path = catalog.select_file(font_family, font_weight)
        assert file_path is not None
        return Path(file_path).name

    assert selected("Inter, sans-serif", 700) == "Inter-Bold.ttf"
    assert selected("Inter", 300) == "Inter-Regular.ttf"
    assert selected("Unknown, serif", 400) == "NotoSerif-Regular.ttf"
    assert selected("Unknown, sans-serif", 400) == "NotoSans-Light.ttf"
    assert selected("Unknown", 650) == "Inter-Bold.ttf"


def test_font_catalog_without_files_uses_default() -> None:
    """An empty catalog still yields a usable default font."""
    catalog = FontCatalog()
    assert catalog.select_file("sans-serif", 700) is None
    font = catalog.load("sans-serif", 700, 24)
    assert font is catalog.load("sans-serif", 700, 24)


def test_missing_fonts_dir_is_rejected(tmp_path: Path) -> None:
    """A missing or empty fonts directory raises a coded error."""
    with pytest.raises(RenderValidationError) as exc_info:
        FontCatalog.from_directory(str(tmp_path / "missing"))
    assert exc_info.value.code == FONT_DIR_CODE
    with pytest.raises(RenderValidationError) as exc_info:
        FontCatalog.from_directory(str(tmp_path))
    assert exc_info.value.code == FONT_DIR_CODE
