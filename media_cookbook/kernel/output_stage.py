"""
Output stage: output container, encoders and muxing.

Lifecycle:
  create() -> add_stream()/add_copy_stream() ... -> write_header()
  -> encode()/write_packet() ... -> flush_encoder() -> finalize()

The trailer is written iff the header was written and ``finalize`` runs.
Releasing the container any other way (``abort`` or the registry's
cleanup on a failed run) closes it and, with ``remove_partial_output``
enabled, deletes the file so no half-written output is left behind.

Packet timestamps are rescaled here from the producer's time base (the
encoder's, or the input stream's for copied packets) into the output
stream's time base, and DTS is kept strictly increasing per stream.
"""

import logging
from dataclasses import dataclass
from fractions import Fraction
from pathlib import Path

import av

from media_cookbook.configs import settings
from media_cookbook.errors import (
    BadParameterError,
    CodecUnavailableError,
    IoError,
    MalformedError,
    UnknownFormatError,
    translate_av_error,
)
from media_cookbook.kernel.resources import ResourceRegistry, ScopedHandle
from media_cookbook.kernel.streams import StreamDescriptor, ordered_layout, rescale
from media_cookbook.schemas import EncoderSpec, MediaKind

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StreamHandle:
    """One output stream and, for encoded streams, its encoder."""

    stream: object
    kind: MediaKind
    encoder: ScopedHandle | None = None
    last_dts: int | None = None
    frames_sent: int = 0
    packets_written: int = 0
    dts_clamped: int = 0
    flushed: bool = False

    @property
    def is_copy(self) -> bool:
        return self.encoder is None

    @property
    def codec_context(self):
        return self.encoder.get() if self.encoder is not None else None

    @property
    def time_base(self) -> Fraction:
        return self.stream.time_base


class OutputStage:
    def __init__(self, registry: ResourceRegistry) -> None:
        self._registry = registry
        self._handle: ScopedHandle | None = None
        self.path: Path | None = None
        self.streams: list[StreamHandle] = []
        self.header_written = False
        self.finalized = False
        self._clean_close = False

    @property
    def container(self) -> av.container.OutputContainer:
        if self._handle is None or not self._handle.alive:
            raise RuntimeError("output stage is not open")
        return self._handle.get()

    @property
    def trailer_written(self) -> bool:
        return self.finalized and self.header_written

    def create(
        self, path: str | Path, format: str | None = None, options: dict[str, str] | None = None
    ) -> "OutputStage":
        """
        Allocate the output container, guessing the format from the extension unless *format* is given.

        Raises:
            UnknownFormatError: the extension (or *format*) names no known muxer.
            IoError: the file cannot be opened for writing.
        """
        self.path = Path(path)
        try:
            container = av.open(str(path), "w", format=format, container_options=options or {})
        except ValueError as e:
            raise UnknownFormatError(
                f"cannot determine output format for '{path}': {e}",
                e.errno if isinstance(e, av.error.FFmpegError) else None,
            ) from e
        except (av.error.FFmpegError, OSError, MemoryError) as e:
            raise translate_av_error(e, f"cannot create output '{path}'") from e

        self._handle = self._registry.output_container(container, release=self._release_container)
        logger.info("[output] Created %s (%s)", self.path.name, container.format.name)
        return self

    def _release_container(self, container) -> None:
        try:
            container.close()
        except BaseException:
            self._remove_partial()
            raise
        if not self._clean_close:
            self._remove_partial()

    def _remove_partial(self) -> None:
        if settings.remove_partial_output and self.path is not None and self.path.exists():
            self.path.unlink()
            logger.info("[output] Removed partial output %s", self.path.name)

    # --- Stream setup -------------------------------------------------------

    def _check_open_for_streams(self) -> None:
        if self.header_written:
            raise BadParameterError("cannot add streams after the container header is written")

    def _codec_name(self, spec: EncoderSpec) -> str:
        if spec.codec:
            name = spec.codec
        elif spec.kind is MediaKind.VIDEO:
            name = self.container.default_video_codec
        elif spec.kind is MediaKind.AUDIO:
            name = self.container.default_audio_codec
        else:
            name = self.container.default_subtitle_codec
        if not name or name == "none":
            raise CodecUnavailableError(f"format '{self.container.format.name}' has no default {spec.kind.value} codec")
        try:
            av.Codec(name, "w")
        except (ValueError, av.error.FFmpegError) as e:
            raise CodecUnavailableError(f"no encoder named '{name}'") from e
        return name

    def add_stream(
        self,
        spec: EncoderSpec,
        source: StreamDescriptor | None = None,
        first_frame=None,
    ) -> StreamHandle:
        """
        Add an encoded stream and open its encoder.

        Parameters not set in *spec* are inherited from *first_frame* (the first
        frame that will be encoded) and then from the *source* stream.
        """
        self._check_open_for_streams()
        codec_name = self._codec_name(spec)
        codec = av.Codec(codec_name, "w")

        try:
            if spec.kind is MediaKind.VIDEO:
                stream = self._add_video_stream(codec, spec, source, first_frame)
            elif spec.kind is MediaKind.AUDIO:
                stream = self._add_audio_stream(codec, spec, source, first_frame)
            else:
                raise BadParameterError(f"cannot encode {spec.kind.value} streams")
        except (av.error.FFmpegError, ValueError, TypeError) as e:
            raise BadParameterError(f"invalid {spec.kind.value} encoder settings for '{codec_name}': {e}") from e

        ctx = stream.codec_context
        if spec.bit_rate:
            ctx.bit_rate = spec.bit_rate
        if spec.options:
            ctx.options = {**ctx.options, **spec.options}
        try:
            ctx.open()
        except (av.error.FFmpegError, OSError, MemoryError) as e:
            raise translate_av_error(e, f"cannot open encoder '{codec_name}'", default=BadParameterError) from e

        handle = StreamHandle(stream=stream, kind=spec.kind, encoder=self._registry.encoder(ctx))
        self.streams.append(handle)
        if spec.kind is MediaKind.VIDEO:
            logger.info(
                "[output] Video encoder %s: %dx%d %s @%s fps, %dk, gop=%d",
                codec_name,
                ctx.width,
                ctx.height,
                ctx.pix_fmt,
                ctx.framerate,
                (ctx.bit_rate or 0) // 1000,
                ctx.gop_size,
            )
        else:
            logger.info(
                "[output] Audio encoder %s: %dHz %s %s",
                codec_name,
                ctx.sample_rate,
                ctx.layout.name,
                ctx.format.name,
            )
        return handle

    def _add_video_stream(self, codec: av.Codec, spec: EncoderSpec, source: StreamDescriptor | None, frame):
        if spec.frame_rate:
            rate = Fraction(spec.frame_rate).limit_denominator(1001000)
        elif source is not None and source.frame_rate:
            rate = Fraction(source.frame_rate)
        else:
            rate = Fraction(settings.default_frame_rate)

        width = spec.width or (frame.width if frame is not None else None) or (source.width if source else 0)
        height = spec.height or (frame.height if frame is not None else None) or (source.height if source else 0)
        if not width or not height:
            raise BadParameterError("video encoder needs a width and a height")

        stream = self.container.add_stream(codec.name, rate=rate)
        ctx = stream.codec_context
        ctx.width = width
        ctx.height = height
        ctx.time_base = 1 / rate
        ctx.pix_fmt = self._pick_pixel_format(codec, spec, frame, source)
        if spec.gop_size is not None:
            ctx.gop_size = spec.gop_size
        if spec.max_b_frames is not None:
            ctx.max_b_frames = spec.max_b_frames
        if codec.name == "libx264" and "preset" not in spec.options:
            ctx.options = {"preset": settings.video_preset}
        return stream

    @staticmethod
    def _pick_pixel_format(codec: av.Codec, spec: EncoderSpec, frame, source: StreamDescriptor | None) -> str:
        supported = [fmt.name for fmt in (codec.video_formats or ())]
        if spec.pixel_format:
            if supported and spec.pixel_format not in supported:
                raise BadParameterError(f"encoder '{codec.name}' does not support pixel format '{spec.pixel_format}'")
            return spec.pixel_format
        candidates = [
            frame.format.name if frame is not None else None,
            source.pixel_format if source is not None else None,
            settings.default_pixel_format,
        ]
        for name in candidates:
            if name and (not supported or name in supported):
                return name
        return supported[0]

    def _add_audio_stream(self, codec: av.Codec, spec: EncoderSpec, source: StreamDescriptor | None, frame):
        rate = spec.sample_rate or (frame.sample_rate if frame is not None else None)
        rate = rate or (source.sample_rate if source is not None else None) or 48000
        layout = spec.channel_layout or (frame.layout.name if frame is not None else None)
        layout = layout or (source.channel_layout if source is not None else None) or "stereo"
        if not codec.name.startswith("pcm_"):
            layout = ordered_layout(layout)

        supported = [fmt.name for fmt in (codec.audio_formats or ())]
        if spec.sample_format:
            if supported and spec.sample_format not in supported:
                raise BadParameterError(f"encoder '{codec.name}' does not support sample format '{spec.sample_format}'")
            sample_format = spec.sample_format
        else:
            wanted = frame.format.name if frame is not None else (source.sample_format if source else None)
            sample_format = wanted if wanted and (not supported or wanted in supported) else supported[0]

        stream = self.container.add_stream(codec.name, rate=int(rate))
        ctx = stream.codec_context
        ctx.layout = layout
        ctx.format = sample_format
        ctx.time_base = Fraction(1, int(rate))
        return stream

    def add_copy_stream(self, template_stream) -> StreamHandle:
        """Add a stream whose packets are copied from *template_stream* without re-encoding."""
        self._check_open_for_streams()
        if template_stream.type not in ("audio", "video", "subtitle"):
            raise BadParameterError(f"cannot copy {template_stream.type} streams")
        kind = MediaKind(template_stream.type)
        try:
            stream = self.container.add_stream_from_template(template_stream, opaque=True)
        except (av.error.FFmpegError, ValueError) as e:
            raise translate_av_error(e, f"cannot copy stream #{template_stream.index}", default=MalformedError) from e
        handle = StreamHandle(stream=stream, kind=kind)
        self.streams.append(handle)
        logger.info("[output] Copy stream: #%d %s", template_stream.index, template_stream.codec_context.name)
        return handle

    # --- Writing ------------------------------------------------------------

    def write_header(self) -> None:
        """Write the container header; no streams may be added afterwards."""
        if self.header_written:
            return
        if not self.streams:
            raise BadParameterError("cannot write a header for a container with no streams")
        try:
            self.container.start_encoding()
        except (av.error.FFmpegError, OSError, MemoryError) as e:
            raise translate_av_error(e, f"cannot write header for '{self.path}'") from e
        self.header_written = True
        logger.debug("[output] Header written: %d stream(s)", len(self.streams))

    def encode(self, handle: StreamHandle, frame) -> list:
        """Send one frame to the stream's encoder and return every packet it produced."""
        try:
            packets = handle.stream.encode(frame)
        except (av.error.FFmpegError, OSError, MemoryError) as e:
            message = f"encode failed on stream #{handle.stream.index}"
            raise translate_av_error(e, message, default=MalformedError) from e
        handle.frames_sent += 1
        return packets

    def flush_encoder(self, handle: StreamHandle) -> list:
        """Drain the encoder. Safe to call multiple times -- later calls return an empty list."""
        if handle.is_copy or handle.flushed:
            return []
        handle.flushed = True
        try:
            return handle.stream.encode(None)
        except av.error.EOFError:
            return []
        except (av.error.FFmpegError, OSError, MemoryError) as e:
            raise translate_av_error(e, f"encoder flush failed on stream #{handle.stream.index}") from e

    def write_packet(self, handle: StreamHandle, packet, source_time_base: Fraction | None = None) -> None:
        """Rescale *packet* into the output stream's time base and hand it to the interleaving muxer."""
        if not self.header_written:
            raise IoError("packet written before the container header")

        src_tb = source_time_base or packet.time_base
        dst_tb = handle.stream.time_base
        if src_tb is not None and dst_tb is not None and src_tb != dst_tb:
            packet.pts = rescale(packet.pts, src_tb, dst_tb)
            packet.dts = rescale(packet.dts, src_tb, dst_tb)
            if packet.duration:
                packet.duration = rescale(packet.duration, src_tb, dst_tb)
        if dst_tb is not None:
            packet.time_base = dst_tb

        if packet.dts is not None:
            if handle.last_dts is not None and packet.dts <= handle.last_dts:
                clamped = handle.last_dts + 1
                logger.debug("[output] Stream #%d: DTS %d -> %d", handle.stream.index, packet.dts, clamped)
                packet.dts = clamped
                handle.dts_clamped += 1
            if packet.pts is not None and packet.pts < packet.dts:
                packet.pts = packet.dts
            handle.last_dts = packet.dts

        packet.stream = handle.stream
        try:
            self.container.mux(packet)
        except (av.error.FFmpegError, OSError, MemoryError) as e:
            raise translate_av_error(e, f"write to '{self.path}' failed") from e
        handle.packets_written += 1

    def finalize(self) -> None:
        """
        Write the trailer if the header was written, then close the file.

        Idempotent, and safe whether or not the header was ever written.
        """
        if self.finalized or self._handle is None:
            return
        self._clean_close = True
        try:
            self._handle.release()
        except (av.error.FFmpegError, OSError) as e:
            raise translate_av_error(e, f"cannot finalize '{self.path}'") from e
        finally:
            self.finalized = True
        logger.info(
            "[output] Finalized %s: %s",
            self.path.name,
            ", ".join(f"#{h.stream.index} {h.kind.value}={h.packets_written}" for h in self.streams) or "no streams",
        )

    def abort(self) -> None:
        """Close without a successful finalize; removes the partial output file."""
        if self._handle is None or self.finalized:
            return
        try:
            self._handle.release()
        except (av.error.FFmpegError, OSError) as e:
            logger.warning("[output] Close after failure raised: %s", e)
