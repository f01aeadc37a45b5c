"""Video recipes run against the synthetic clips from conftest."""

import pytest

from helpers import count_video_frames, filter_available, probe
from media_cookbook.errors import BadFilterError, BadParameterError, CodecUnavailableError
from media_cookbook.recipes.base import run_recipe
from media_cookbook.recipes.gif import GifParams, make_gif
from media_cookbook.recipes.stabilize import require_vidstab, stabilize
from media_cookbook.recipes.video import (
    crop_plan,
    overlay_position,
    pip_plan,
    resize_plan,
    rotate_plan,
    speed_plan,
    thumbnail_plan,
    transcode_plan,
    video_encoder,
    watermark_plan,
)


def video_info(path) -> dict:
    return next(s for s in probe(path)["streams"] if s["type"] == "video")


def kinds(path) -> list[str]:
    return sorted(s["type"] for s in probe(path)["streams"])


# =============================================================================
# Transcode
# =============================================================================


def test_transcode_copies_audio(av_file, tmp_path):
    out = tmp_path / "transcoded.mkv"
    stats = run_recipe(transcode_plan(av_file, out, codec="mpeg4", bitrate="500k"), progress=None)
    assert kinds(out) == ["audio", "video"]
    assert count_video_frames(out) == 125
    assert stats.packets_copied > 0


def test_transcode_without_audio(av_file, tmp_path):
    out = tmp_path / "silent.mkv"
    run_recipe(transcode_plan(av_file, out, codec="mpeg4", copy_audio=False), progress=None)
    assert kinds(out) == ["video"]


def test_unknown_encoder(av_file, tmp_path):
    with pytest.raises(CodecUnavailableError, match="no-such-encoder"):
        transcode_plan(av_file, tmp_path / "x.mkv", codec="no-such-encoder")


def test_default_encoder_exists():
    encoder = video_encoder()
    assert encoder.codec
    assert encoder.bit_rate


# =============================================================================
# Geometry
# =============================================================================


def test_resize_keeps_aspect(av_file, tmp_path):
    out = tmp_path / "small.mkv"
    run_recipe(resize_plan(av_file, out, width=160, codec="mpeg4"), progress=None)
    info = video_info(out)
    assert (info["width"], info["height"]) == (160, 90)


def test_resize_needs_a_dimension(av_file, tmp_path):
    with pytest.raises(BadParameterError):
        resize_plan(av_file, tmp_path / "x.mkv")


def test_crop(av_file, tmp_path):
    out = tmp_path / "crop.mkv"
    run_recipe(crop_plan(av_file, out, x=40, y=20, width=200, height=100, codec="mpeg4"), progress=None)
    info = video_info(out)
    assert (info["width"], info["height"]) == (200, 100)


def test_crop_outside_the_frame(av_file, tmp_path):
    with pytest.raises(BadParameterError, match="does not fit"):
        crop_plan(av_file, tmp_path / "x.mkv", x=200, width=200, height=100)


def test_rotate_quarter_turn_swaps_dimensions(av_file, tmp_path):
    out = tmp_path / "rotated.mkv"
    run_recipe(rotate_plan(av_file, out, angle=90, codec="mpeg4"), progress=None)
    info = video_info(out)
    assert (info["width"], info["height"]) == (180, 320)


def test_rotate_nothing_to_do(av_file, tmp_path):
    with pytest.raises(BadParameterError, match="nothing to do"):
        rotate_plan(av_file, tmp_path / "x.mkv", angle=0)


def test_speed_up_drops_audio(av_file, tmp_path):
    out = tmp_path / "fast.mkv"
    run_recipe(speed_plan(av_file, out, factor=2.0, codec="mpeg4"), progress=None)
    assert kinds(out) == ["video"]
    assert probe(out)["duration"] == pytest.approx(2.5, abs=0.2)


def test_speed_on_audio_only_file(tone_wav, tmp_path):
    out = tmp_path / "fast.wav"
    run_recipe(speed_plan(tone_wav, out, factor=1.5), progress=None)
    assert probe(out)["duration"] == pytest.approx(2.0, abs=0.1)


def test_speed_factor_range(av_file, tmp_path):
    with pytest.raises(BadParameterError):
        speed_plan(av_file, tmp_path / "x.mkv", factor=8)


# =============================================================================
# Overlays
# =============================================================================


def test_overlay_positions():
    assert overlay_position("top-left", 10) == "10:10"
    assert overlay_position("bottom-right", 5) == "W-w-5:H-h-5"
    assert overlay_position("center", 5) == "(W-w)/2:(H-h)/2"


def test_image_watermark(av_file, watermark_png, tmp_path):
    out = tmp_path / "marked.mkv"
    run_recipe(watermark_plan(av_file, out, image=watermark_png, position="top-right", codec="mpeg4"), progress=None)
    info = video_info(out)
    assert (info["width"], info["height"]) == (320, 180)
    assert count_video_frames(out) == 125
    assert "audio" in kinds(out)


@pytest.mark.skipif(not filter_available("drawtext"), reason="drawtext filter not built in")
def test_text_watermark(short_av_file, tmp_path):
    out = tmp_path / "text.mkv"
    run_recipe(watermark_plan(short_av_file, out, text="Sample: 1", codec="mpeg4"), progress=None)
    assert count_video_frames(out) == 25


def test_watermark_needs_exactly_one_source(av_file, watermark_png, tmp_path):
    with pytest.raises(BadParameterError):
        watermark_plan(av_file, tmp_path / "x.mkv")
    with pytest.raises(BadParameterError):
        watermark_plan(av_file, tmp_path / "x.mkv", text="hi", image=watermark_png)


def test_missing_watermark_image(av_file, tmp_path):
    with pytest.raises(BadParameterError, match="does not exist"):
        watermark_plan(av_file, tmp_path / "x.mkv", image=tmp_path / "missing.png")


def test_picture_in_picture_follows_main_video(av_file, short_av_file, tmp_path):
    out = tmp_path / "pip.mkv"
    run_recipe(pip_plan(av_file, short_av_file, out, scale=0.5, codec="mpeg4"), progress=None)
    info = video_info(out)
    assert (info["width"], info["height"]) == (320, 180)
    assert kinds(out) == ["video"]
    assert abs(count_video_frames(out) - 125) <= 1


# =============================================================================
# Thumbnail
# =============================================================================


def test_thumbnail_png(av_file, tmp_path):
    out = tmp_path / "thumb.png"
    stats = run_recipe(thumbnail_plan(av_file, out, time=1.0, width=160), progress=None)
    assert stats.frames_encoded == 1
    info = video_info(out)
    assert (info["codec"], info["width"], info["height"]) == ("png", 160, 90)


def test_thumbnail_past_the_end(av_file, tmp_path):
    with pytest.raises(BadParameterError, match="past the end"):
        thumbnail_plan(av_file, tmp_path / "thumb.png", time=30)


def test_thumbnail_image_type(av_file, tmp_path):
    with pytest.raises(BadParameterError, match="unsupported image type"):
        thumbnail_plan(av_file, tmp_path / "thumb.tiff")


# =============================================================================
# GIF
# =============================================================================


def test_gif_scale_chain():
    assert GifParams().scale_chain() == "fps=10"
    assert GifParams(width=480, fps=12).scale_chain() == "fps=12,scale=480:-1:flags=lanczos"


def test_make_gif(widescreen_video, tmp_path):
    out = tmp_path / "clip.gif"
    make_gif(widescreen_video, out, progress=None, width=480, fps=10)
    info = video_info(out)
    assert (info["codec"], info["width"], info["height"]) == ("gif", 480, 270)
    assert abs(count_video_frames(out) - 20) <= 1


def test_gif_window(av_file, tmp_path):
    out = tmp_path / "window.gif"
    make_gif(av_file, out, progress=None, fps=5, colors=16, dither="bayer", start=1.0, duration=1.0)
    assert abs(count_video_frames(out) - 5) <= 1


def test_gif_colors_range(widescreen_video, tmp_path):
    with pytest.raises(BadParameterError):
        make_gif(widescreen_video, tmp_path / "x.gif", progress=None, colors=2)


# =============================================================================
# Stabilization
# =============================================================================


@pytest.mark.skipif(not filter_available("vidstabdetect"), reason="vid.stab not built in")
def test_stabilize(short_av_file, tmp_path):
    out = tmp_path / "stable.mkv"
    stabilize(short_av_file, out, progress=None, codec="mpeg4")
    assert count_video_frames(out) == 25


@pytest.mark.skipif(filter_available("vidstabdetect"), reason="vid.stab is built in")
def test_stabilize_without_vidstab(short_av_file, tmp_path):
    with pytest.raises(BadFilterError, match="vid.stab"):
        require_vidstab()
    with pytest.raises(BadFilterError):
        stabilize(short_av_file, tmp_path / "x.mkv", progress=None)
