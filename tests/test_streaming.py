import pytest

from helpers import probe
from media_cookbook.errors import BadParameterError, IoError, MalformedError
from media_cookbook.recipes.base import run_recipe
from media_cookbook.recipes.hls import hls_plan, parse_playlist, read_playlist, segment_pattern

PLAYLIST = """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-TARGETDURATION:4
#EXT-X-MEDIA-SEQUENCE:0
#EXTINF:4.000000,
clip_000.ts
#EXTINF:3.500000,
clip_001.ts
#EXT-X-ENDLIST
"""


def test_segment_pattern(tmp_path):
    assert segment_pattern(tmp_path / "show.m3u8") == tmp_path / "show_%03d.ts"


def test_hls_segments_long_clip(long_av_file, tmp_path):
    playlist_path = tmp_path / "stream.m3u8"
    stats = run_recipe(hls_plan(long_av_file, playlist_path, segment_time=4), progress=None)
    assert stats.frames_decoded == 0

    playlist = read_playlist(playlist_path)
    assert playlist.ended
    assert [s.uri for s in playlist.segments] == ["stream_000.ts", "stream_001.ts", "stream_002.ts"]
    for segment in playlist.segments:
        assert segment.duration == pytest.approx(4.0, abs=0.5)
        assert (tmp_path / segment.uri).stat().st_size > 0
    assert playlist.total_duration == pytest.approx(12.0, abs=0.5)
    assert sorted(s["type"] for s in probe(tmp_path / "stream_000.ts")["streams"]) == ["audio", "video"]


def test_parse_playlist():
    playlist = parse_playlist(PLAYLIST)
    assert playlist.target_duration == 4
    assert [(s.uri, s.duration) for s in playlist.segments] == [("clip_000.ts", 4.0), ("clip_001.ts", 3.5)]
    assert playlist.ended
    assert playlist.total_duration == 7.5


def test_live_playlist_has_no_end():
    playlist = parse_playlist(PLAYLIST.replace("#EXT-X-ENDLIST\n", ""))
    assert not playlist.ended


@pytest.mark.parametrize(
    "text, message",
    [
        ("", "missing #EXTM3U"),
        ("#EXTM3U\nclip_000.ts\n", "has no #EXTINF"),
        ("#EXTM3U\n#EXTINF:soon,\nclip_000.ts\n", "bad #EXTINF"),
        ("#EXTM3U\n#EXT-X-TARGETDURATION:four\n", "bad #EXT-X-TARGETDURATION"),
    ],
)
def test_malformed_playlists(text, message):
    with pytest.raises(MalformedError, match=message):
        parse_playlist(text)


def test_unreadable_playlist(tmp_path):
    with pytest.raises(IoError):
        read_playlist(tmp_path / "missing.m3u8")


def test_segment_time_range(long_av_file, tmp_path):
    with pytest.raises(BadParameterError, match="segment_time"):
        hls_plan(long_av_file, tmp_path / "x.m3u8", segment_time=0.1)
