"""Command-line entry point: argument mapping, exit codes and error output."""

import pytest

from helpers import probe
from media_cookbook.cli.app import main


def test_effect_with_preset_and_override(quiet_wav, tmp_path):
    out = tmp_path / "delay.wav"
    assert main(["effect", "delay", str(quiet_wav), str(out), "--preset", "slap", "--feedback", "0.3"]) == 0
    assert probe(out)["streams"][0]["type"] == "audio"


def test_effect_defaults(quiet_wav, tmp_path):
    out = tmp_path / "chorus.wav"
    assert main(["effect", "chorus", str(quiet_wav), str(out)]) == 0
    assert out.stat().st_size > 44


def test_unknown_preset_is_reported(quiet_wav, tmp_path, capsys):
    code = main(["effect", "reverb", str(quiet_wav), str(tmp_path / "x.wav"), "--preset", "cathedral-xl"])
    assert code == 1
    assert "Error: unknown preset 'cathedral-xl'" in capsys.readouterr().err


def test_out_of_range_value_is_reported(quiet_wav, tmp_path, capsys):
    code = main(["effect", "distortion", str(quiet_wav), str(tmp_path / "x.wav"), "--drive", "25"])
    assert code == 1
    assert "Error: drive" in capsys.readouterr().err


def test_media_failure_reports_ffmpeg_code(truncated_mp4, tmp_path, capsys):
    assert main(["to-wav", str(truncated_mp4), str(tmp_path / "x.wav")]) == 1
    assert "FFmpeg error:" in capsys.readouterr().err
    assert not (tmp_path / "x.wav").exists()


def test_missing_input(tmp_path, capsys):
    assert main(["normalize", str(tmp_path / "missing.wav"), str(tmp_path / "x.wav")]) == 1
    err = capsys.readouterr().err
    # PyAV raises the missing file with its errno, so the framework rendering is used
    assert "FFmpeg error: cannot open input" in err
    assert "missing.wav" in err


def test_help_exits_cleanly(capsys):
    assert main(["--help"]) == 0
    assert "effect" in capsys.readouterr().out


def test_usage_error_exits_with_one():
    assert main(["effect", "chorus", "--no-such-flag"]) == 1
    assert main(["no-such-command"]) == 1


def test_mix_takes_output_option(tone_wav, quiet_wav, tmp_path):
    out = tmp_path / "mix.wav"
    assert main(["mix", str(tone_wav), str(quiet_wav), "-o", str(out), "--duration", "shortest"]) == 0
    assert probe(out)["duration"] == pytest.approx(1.0, abs=0.1)


def test_video_command(av_file, tmp_path):
    out = tmp_path / "small.mkv"
    assert main(["resize", str(av_file), str(out), "--width", "160", "--codec", "mpeg4"]) == 0
    video = next(s for s in probe(out)["streams"] if s["type"] == "video")
    assert (video["width"], video["height"]) == (160, 90)


def test_subtitles_convert(srt_file, tmp_path, capsys):
    out = tmp_path / "cues.vtt"
    assert main(["subtitles", "convert", str(srt_file), str(out)]) == 0
    assert out.read_text().startswith("WEBVTT")
    assert "Wrote 2 cue(s)" in capsys.readouterr().out


def test_hls_command(long_av_file, tmp_path, capsys):
    playlist = tmp_path / "live.m3u8"
    assert main(["hls", str(long_av_file), str(playlist), "--segment-time", "4"]) == 0
    assert "Wrote 3 segment(s)" in capsys.readouterr().out
    assert (tmp_path / "live_000.ts").exists()
