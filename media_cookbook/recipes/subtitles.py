"""
Subtitle side channel: SRT, WebVTT and ASS readers/writers, track extraction
and burn-in.

Timestamp formats:

- SRT: ``HH:MM:SS,mmm``
- WebVTT: ``HH:MM:SS.mmm`` (``MM:SS.mmm`` is accepted on input)
- ASS: ``H:MM:SS.cc``, line breaks written as ``\\N``
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

import av
from pydantic import BaseModel, Field

from media_cookbook.errors import (
    BadFilterError,
    BadParameterError,
    IoError,
    MalformedError,
    NoSuchStreamError,
    NotFoundError,
)
from media_cookbook.kernel.filter_dsl import escape_value
from media_cookbook.kernel.input_stage import InputStage
from media_cookbook.kernel.resources import ResourceRegistry
from media_cookbook.recipes.base import RecipePlan, resolve_params
from media_cookbook.recipes.video import video_encoder, video_filter_plan
from media_cookbook.schemas import MediaKind

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SubtitleCue:
    start: float
    end: float
    text: str


# =============================================================================
# Timestamps
# =============================================================================


def _split_time(seconds: float, unit: int) -> tuple[int, int, int, int]:
    total = int(round(seconds * unit))
    hours, rest = divmod(total, 3600 * unit)
    minutes, rest = divmod(rest, 60 * unit)
    secs, fraction = divmod(rest, unit)
    return hours, minutes, secs, fraction


def format_srt_time(seconds: float) -> str:
    h, m, s, ms = _split_time(seconds, 1000)
    return f"{h:02d}:{m:02d}:{s:02d},{ms:03d}"


def format_vtt_time(seconds: float) -> str:
    h, m, s, ms = _split_time(seconds, 1000)
    return f"{h:02d}:{m:02d}:{s:02d}.{ms:03d}"


def format_ass_time(seconds: float) -> str:
    h, m, s, cs = _split_time(seconds, 100)
    return f"{h:d}:{m:02d}:{s:02d}.{cs:02d}"


_TIME_RE = re.compile(r"^(?:(\d+):)?(\d{1,2}):(\d{2})[,.](\d{1,3})$")


def parse_time(text: str) -> float:
    """Parse an SRT, WebVTT or ASS timestamp into seconds."""
    match = _TIME_RE.match(text.strip())
    if not match:
        raise MalformedError(f"bad subtitle timestamp '{text}'")
    hours, minutes, secs, fraction = match.groups()
    return int(hours or 0) * 3600 + int(minutes) * 60 + int(secs) + int(fraction) / 10 ** len(fraction)


# =============================================================================
# SRT / WebVTT
# =============================================================================


def _blocks(text: str) -> list[list[str]]:
    blocks, current = [], []
    for line in text.replace("\r\n", "\n").replace("\ufeff", "").split("\n"):
        if line.strip():
            current.append(line.rstrip())
        elif current:
            blocks.append(current)
            current = []
    if current:
        blocks.append(current)
    return blocks


def _timed_cue(lines: list[str]) -> SubtitleCue | None:
    # The timing line is the first or (after a cue identifier) second line
    for i, line in enumerate(lines[:2]):
        if "-->" in line:
            start, _, end = line.partition("-->")
            # WebVTT cue settings follow the end time
            end = end.split()[0] if end.split() else end
            return SubtitleCue(parse_time(start), parse_time(end), "\n".join(lines[i + 1 :]))
    return None


def parse_srt(text: str) -> list[SubtitleCue]:
    cues = []
    for block in _blocks(text):
        cue = _timed_cue(block)
        if cue is None:
            raise MalformedError(f"SRT block without timing: {block[0]!r}")
        cues.append(cue)
    return cues


def parse_vtt(text: str) -> list[SubtitleCue]:
    blocks = _blocks(text)
    if not blocks or not blocks[0][0].startswith("WEBVTT"):
        raise MalformedError("not a WebVTT file (missing WEBVTT header)")
    cues = []
    for block in blocks[1:]:
        if block[0].startswith(("NOTE", "STYLE", "REGION")):
            continue
        cue = _timed_cue(block)
        if cue is not None:
            cues.append(cue)
    return cues


def format_srt(cues: list[SubtitleCue]) -> str:
    out = []
    for number, cue in enumerate(cues, 1):
        out.append(f"{number}\n{format_srt_time(cue.start)} --> {format_srt_time(cue.end)}\n{cue.text}\n")
    return "\n".join(out)


def format_vtt(cues: list[SubtitleCue]) -> str:
    out = ["WEBVTT\n"]
    for cue in cues:
        out.append(f"{format_vtt_time(cue.start)} --> {format_vtt_time(cue.end)}\n{cue.text}\n")
    return "\n".join(out)


# =============================================================================
# ASS
# =============================================================================

ASS_HEADER = """[Script Info]
Title: Generated Subtitles
ScriptType: v4.00+
WrapStyle: 0
PlayResX: 1920
PlayResY: 1080
ScaledBorderAndShadow: yes

[V4+ Styles]
Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, BackColour, Bold, Italic, \
Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, \
MarginV, Encoding
Style: Default,Arial,48,&H00FFFFFF,&H000000FF,&H00000000,&H00000000,0,0,0,0,100,100,0,0,1,2,2,2,10,10,10,1

[Events]
Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text
"""

_ASS_OVERRIDE_RE = re.compile(r"\{[^}]*\}")


def ass_to_plain(text: str) -> str:
    """Drop ``{...}`` override blocks and turn ``\\N`` / ``\\n`` into newlines."""
    return _ASS_OVERRIDE_RE.sub("", text).replace("\\N", "\n").replace("\\n", "\n")


def format_ass(cues: list[SubtitleCue]) -> str:
    lines = [ASS_HEADER]
    for cue in cues:
        text = cue.text.replace("\n", "\\N")
        lines.append(f"Dialogue: 0,{format_ass_time(cue.start)},{format_ass_time(cue.end)},Default,,0,0,0,,{text}\n")
    return "".join(lines)


def parse_ass(text: str) -> list[SubtitleCue]:
    fields: list[str] | None = None
    in_events = False
    cues = []
    for raw in text.replace("\r\n", "\n").split("\n"):
        line = raw.strip()
        if line.startswith("["):
            in_events = line.lower() == "[events]"
            continue
        if not in_events:
            continue
        if line.startswith("Format:"):
            fields = [f.strip() for f in line[len("Format:") :].split(",")]
        elif line.startswith("Dialogue:"):
            if fields is None:
                raise MalformedError("ASS [Events] section has no Format line")
            values = line[len("Dialogue:") :].split(",", len(fields) - 1)
            if len(values) != len(fields):
                raise MalformedError(f"bad ASS dialogue line: {line!r}")
            entry = dict(zip(fields, (v.strip() for v in values)))
            cues.append(SubtitleCue(parse_time(entry["Start"]), parse_time(entry["End"]), ass_to_plain(entry["Text"])))
    if fields is None:
        raise MalformedError("not an ASS file (no [Events] section)")
    return cues


# =============================================================================
# Files
# =============================================================================

_READERS = {".srt": parse_srt, ".vtt": parse_vtt, ".ass": parse_ass, ".ssa": parse_ass}
_WRITERS = {".srt": format_srt, ".vtt": format_vtt, ".ass": format_ass}


def _suffix(path: Path, table: dict) -> str:
    suffix = path.suffix.lower()
    if suffix not in table:
        raise BadParameterError(f"unsupported subtitle format '{suffix}' (use {', '.join(table)})")
    return suffix


def read_subtitles(path: str | Path) -> list[SubtitleCue]:
    path = Path(path)
    suffix = _suffix(path, _READERS)
    if not path.is_file():
        raise NotFoundError(f"subtitle file '{path}' does not exist")
    try:
        text = path.read_text(encoding="utf-8-sig")
    except OSError as e:
        raise IoError(f"cannot read '{path}': {e}") from e
    return _READERS[suffix](text)


def write_subtitles(path: str | Path, cues: list[SubtitleCue]) -> None:
    path = Path(path)
    suffix = _suffix(path, _WRITERS)
    try:
        path.write_text(_WRITERS[suffix](cues), encoding="utf-8")
    except OSError as e:
        raise IoError(f"cannot write '{path}': {e}") from e
    logger.info("[subtitles] Wrote %d cue(s) to %s", len(cues), path)


def convert_subtitles(input_path: str | Path, output_path: str | Path) -> list[SubtitleCue]:
    cues = read_subtitles(input_path)
    write_subtitles(output_path, cues)
    return cues


# =============================================================================
# Extraction
# =============================================================================


def _as_text(value) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value or ""


def _rect_text(rect) -> str | None:
    ass = getattr(rect, "ass", None)
    if ass:
        # ReadOrder,Layer,Style,Name,MarginL,MarginR,MarginV,Effect,Text
        parts = _as_text(ass).split(",", 8)
        return ass_to_plain(parts[-1]).strip()
    text = getattr(rect, "text", None)
    if text:
        return _as_text(text).strip()
    return None


def _decode_subtitle_sets(codec_context, packet) -> list:
    # decode2() yields the SubtitleSet with its display times; older releases
    # return SubtitleSets straight from decode().
    decode2 = getattr(codec_context, "decode2", None)
    if decode2 is None:
        return codec_context.decode(packet)
    subtitle_set = decode2(packet)
    return [subtitle_set] if subtitle_set is not None else []


def _rects(subtitle_set) -> list:
    # Newer SubtitleSets are iterable; a bare subtitle object is its own rect.
    rects = getattr(subtitle_set, "rects", None)
    if rects is not None:
        return list(rects)
    try:
        return list(subtitle_set)
    except TypeError:
        return [subtitle_set]


def read_subtitle_track(media_path: str | Path) -> list[SubtitleCue]:
    """Decode the first subtitle track of *media_path* into text cues."""
    cues = []
    with ResourceRegistry() as registry:
        stage = InputStage(registry).open(media_path)
        try:
            index = stage.select_stream(MediaKind.SUBTITLE)
        except NoSuchStreamError as e:
            raise NotFoundError(f"'{media_path}' has no subtitle track") from e
        decoder = stage.open_decoder(index)
        for packet in stage.packets([index]):
            if packet.pts is None:
                continue
            try:
                subtitle_sets = _decode_subtitle_sets(decoder.codec_context, packet)
            except av.error.FFmpegError as e:
                logger.warning("[subtitles] Skipping undecodable subtitle packet at pts=%s: %s", packet.pts, e)
                continue
            start = float(packet.pts * packet.time_base)
            for subtitle_set in subtitle_sets:
                end_display_time = getattr(subtitle_set, "end_display_time", 0)
                if end_display_time:
                    end = start + end_display_time / 1000
                else:
                    end = start + float((packet.duration or 0) * packet.time_base)
                for rect in _rects(subtitle_set):
                    text = _rect_text(rect)
                    if text:
                        cues.append(SubtitleCue(start, end, text))
    logger.info("[subtitles] Extracted %d cue(s) from %s", len(cues), media_path)
    return cues


def extract_subtitles(media_path: str | Path, output_path: str | Path) -> list[SubtitleCue]:
    cues = read_subtitle_track(media_path)
    write_subtitles(output_path, cues)
    return cues


# =============================================================================
# Burn-in
# =============================================================================


class BurnParams(BaseModel):
    font_size: int | None = Field(None, ge=6, le=400, description="Override the subtitle font size.")
    codec: str | None = None
    bitrate: str | None = None


def burn_plan(
    input_path: str | Path,
    subtitle_path: str | Path,
    output_path: str | Path,
    **overrides,
) -> RecipePlan:
    """Render *subtitle_path* into the video frames (hard subtitles)."""
    p = resolve_params(BurnParams, {}, None, overrides)
    if "subtitles" not in av.filter.filters_available:
        raise BadFilterError("the media framework was built without the 'subtitles' filter (libass)")
    subtitle_path = Path(subtitle_path)
    if not subtitle_path.is_file():
        raise NotFoundError(f"subtitle file '{subtitle_path}' does not exist")
    description = f"subtitles=filename={escape_value(str(subtitle_path))}"
    if p.font_size:
        description += f":force_style={escape_value(f'Fontsize={p.font_size}')}"
    return video_filter_plan("burn-subtitles", input_path, output_path, description, video_encoder(p.codec, p.bitrate))
