"""Subtitle parsing, conversion, extraction and burn-in."""

import pytest

from helpers import SRT_TEXT, count_video_frames, filter_available
from media_cookbook.errors import BadFilterError, BadParameterError, MalformedError, NotFoundError
from media_cookbook.recipes.base import run_recipe
from media_cookbook.recipes.subtitles import (
    SubtitleCue,
    ass_to_plain,
    burn_plan,
    convert_subtitles,
    extract_subtitles,
    format_ass,
    format_ass_time,
    format_srt,
    format_srt_time,
    format_vtt,
    format_vtt_time,
    parse_ass,
    parse_srt,
    parse_time,
    parse_vtt,
    read_subtitle_track,
    read_subtitles,
    write_subtitles,
)

CUES = [SubtitleCue(0.5, 1.25, "Hello there"), SubtitleCue(1.5, 2.75, "Second line\nspans two rows")]

VTT_TEXT = """WEBVTT

NOTE written by hand

intro
00:00.500 --> 00:01.250 align:start position:10%
Hello there

00:00:01.500 --> 00:00:02.750
Second line
spans two rows
"""


# =============================================================================
# Timestamps
# =============================================================================


def test_timestamp_formats():
    assert format_srt_time(3723.456) == "01:02:03,456"
    assert format_vtt_time(3723.456) == "01:02:03.456"
    assert format_ass_time(3723.456) == "1:02:03.46"


@pytest.mark.parametrize(
    "text, seconds",
    [
        ("01:02:03,456", 3723.456),
        ("01:02:03.456", 3723.456),
        ("1:02:03.46", 3723.46),
        ("02:03.5", 123.5),
    ],
)
def test_parse_time(text, seconds):
    assert parse_time(text) == pytest.approx(seconds)


def test_parse_bad_time():
    with pytest.raises(MalformedError):
        parse_time("soon")


# =============================================================================
# Text formats
# =============================================================================


def test_parse_srt():
    assert parse_srt(SRT_TEXT) == CUES


def test_parse_srt_with_bom_and_crlf():
    text = "\ufeff" + SRT_TEXT.replace("\n", "\r\n")
    assert parse_srt(text) == CUES


def test_srt_block_without_timing():
    with pytest.raises(MalformedError):
        parse_srt("1\nno timing here\n")


def test_format_srt_parses_back():
    text = format_srt(CUES)
    assert text.startswith("1\n00:00:00,500 --> 00:00:01,250\nHello there\n")
    assert parse_srt(text) == CUES


def test_parse_vtt_skips_notes_and_cue_settings():
    assert parse_vtt(VTT_TEXT) == CUES


def test_vtt_needs_header():
    with pytest.raises(MalformedError, match="WEBVTT"):
        parse_vtt(SRT_TEXT)


def test_format_vtt():
    text = format_vtt(CUES)
    assert text.startswith("WEBVTT\n")
    assert "00:00:00.500 --> 00:00:01.250" in text


def test_ass_dialogue_keeps_commas_in_text():
    text = format_ass([SubtitleCue(1.0, 2.0, "Well, well,\nwell")])
    assert "Dialogue: 0,0:00:01.00,0:00:02.00,Default,,0,0,0,,Well, well,\\Nwell" in text
    assert parse_ass(text) == [SubtitleCue(1.0, 2.0, "Well, well,\nwell")]


def test_ass_to_plain():
    assert ass_to_plain(r"{\i1}Hi{\i0}\Nthere") == "Hi\nthere"


@pytest.mark.parametrize(
    "text",
    [
        "[Script Info]\nTitle: x\n",
        "[Events]\nDialogue: 0,0:00:01.00,0:00:02.00,Default,,0,0,0,,Hi\n",
    ],
)
def test_malformed_ass(text):
    with pytest.raises(MalformedError):
        parse_ass(text)


# =============================================================================
# Files
# =============================================================================


@pytest.mark.parametrize("suffix", [".vtt", ".ass", ".srt"])
def test_convert_by_extension(srt_file, tmp_path, suffix):
    out = tmp_path / f"cues{suffix}"
    cues = convert_subtitles(srt_file, out)
    assert cues == CUES
    assert read_subtitles(out) == CUES


def test_unsupported_extension(srt_file, tmp_path):
    with pytest.raises(BadParameterError, match="unsupported subtitle format"):
        convert_subtitles(srt_file, tmp_path / "cues.sub")
    with pytest.raises(BadParameterError):
        write_subtitles(tmp_path / "cues.txt", CUES)


def test_missing_subtitle_file(tmp_path):
    with pytest.raises(NotFoundError):
        read_subtitles(tmp_path / "missing.srt")


# =============================================================================
# Extraction and burn-in
# =============================================================================


def test_read_subtitle_track(subtitled_mkv):
    cues = read_subtitle_track(subtitled_mkv)
    assert [c.text for c in cues] == [c.text for c in CUES]
    for found, expected in zip(cues, CUES):
        assert found.start == pytest.approx(expected.start, abs=0.01)
        assert found.end == pytest.approx(expected.end, abs=0.01)


def test_extract_to_vtt(subtitled_mkv, tmp_path):
    out = tmp_path / "track.vtt"
    extract_subtitles(subtitled_mkv, out)
    assert [c.text for c in read_subtitles(out)] == [c.text for c in CUES]


def test_no_subtitle_track(av_file):
    with pytest.raises(NotFoundError, match="no subtitle track"):
        read_subtitle_track(av_file)


@pytest.mark.skipif(not filter_available("subtitles"), reason="subtitles filter not built in")
def test_burn_subtitles(short_av_file, srt_file, tmp_path):
    out = tmp_path / "burned.mkv"
    run_recipe(burn_plan(short_av_file, srt_file, out, font_size=18, codec="mpeg4"), progress=None)
    assert count_video_frames(out) == 25


@pytest.mark.skipif(not filter_available("subtitles"), reason="subtitles filter not built in")
def test_burn_missing_subtitles(short_av_file, tmp_path):
    with pytest.raises(NotFoundError):
        burn_plan(short_av_file, tmp_path / "missing.srt", tmp_path / "x.mkv")


@pytest.mark.skipif(filter_available("subtitles"), reason="subtitles filter is built in")
def test_burn_needs_libass(short_av_file, srt_file, tmp_path):
    with pytest.raises(BadFilterError, match="libass"):
        burn_plan(short_av_file, srt_file, tmp_path / "x.mkv")
