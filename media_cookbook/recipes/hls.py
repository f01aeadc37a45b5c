"""
HLS segmentation by stream copy, plus a reader for the resulting media playlist.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, Field

from media_cookbook.const import HLS_SEGMENT_PATTERN
from media_cookbook.errors import IoError, MalformedError
from media_cookbook.recipes.base import RecipePlan, build_config, has_stream, resolve_params
from media_cookbook.schemas import InputSpec, MediaKind

logger = logging.getLogger(__name__)


class HlsParams(BaseModel):
    segment_time: float = Field(4.0, ge=1, le=60, description="Target segment duration in seconds.")
    list_size: int = Field(0, ge=0, description="Playlist entries to keep; 0 keeps every segment.")


def segment_pattern(playlist_path: str | Path) -> Path:
    path = Path(playlist_path)
    return path.with_name(HLS_SEGMENT_PATTERN.format(stem=path.stem))


def hls_plan(input_path: str | Path, playlist_path: str | Path, **overrides) -> RecipePlan:
    """
    Split *input_path* into ``<stem>_000.ts``, ``<stem>_001.ts``, ... next to *playlist_path*.

    Segments are cut on keyframes, so their durations follow the source GOP
    structure around the target.
    """
    p = resolve_params(HlsParams, {}, None, overrides)
    copy_kinds = [kind for kind in (MediaKind.VIDEO, MediaKind.AUDIO) if has_stream(input_path, kind)]
    config = build_config(
        inputs=[InputSpec(path=input_path, kind=copy_kinds[0] if copy_kinds else MediaKind.VIDEO)],
        output=playlist_path,
        output_format="hls",
        output_options={
            "hls_time": f"{p.segment_time:g}",
            "hls_list_size": str(p.list_size),
            "hls_segment_filename": str(segment_pattern(playlist_path)),
        },
        copy_kinds=copy_kinds,
        transcode=False,
    )
    return RecipePlan(name="hls", config=config)


@dataclass(slots=True)
class HlsSegment:
    uri: str
    duration: float


@dataclass(slots=True)
class HlsPlaylist:
    target_duration: int | None = None
    segments: list[HlsSegment] = field(default_factory=list)
    ended: bool = False

    @property
    def total_duration(self) -> float:
        return sum(s.duration for s in self.segments)


def parse_playlist(text: str) -> HlsPlaylist:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines or lines[0] != "#EXTM3U":
        raise MalformedError("not an M3U8 playlist (missing #EXTM3U)")

    playlist = HlsPlaylist()
    pending: float | None = None
    for line in lines[1:]:
        if line.startswith("#EXT-X-TARGETDURATION:"):
            value = line.split(":", 1)[1]
            try:
                playlist.target_duration = int(value)
            except ValueError as e:
                raise MalformedError(f"bad #EXT-X-TARGETDURATION '{value}'") from e
        elif line.startswith("#EXTINF:"):
            value = line.split(":", 1)[1].split(",", 1)[0]
            try:
                pending = float(value)
            except ValueError as e:
                raise MalformedError(f"bad #EXTINF duration '{value}'") from e
        elif line == "#EXT-X-ENDLIST":
            playlist.ended = True
        elif not line.startswith("#"):
            if pending is None:
                raise MalformedError(f"segment '{line}' has no #EXTINF")
            playlist.segments.append(HlsSegment(uri=line, duration=pending))
            pending = None
    return playlist


def read_playlist(path: str | Path) -> HlsPlaylist:
    try:
        text = Path(path).read_text()
    except OSError as e:
        raise IoError(f"cannot read playlist '{path}': {e}") from e
    playlist = parse_playlist(text)
    logger.debug("[hls] %s: %d segment(s), %.2fs", path, len(playlist.segments), playlist.total_duration)
    return playlist
