"""
Input stage: container open, stream selection, decoder construction.

Translates a path and a target media kind into an opened demuxer, a
chosen stream index and a decoder ready to receive packets. Every
framework object is registered with the run's ``ResourceRegistry``.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from fractions import Fraction
from pathlib import Path

import av

from media_cookbook.configs import settings
from media_cookbook.errors import (
    CodecUnavailableError,
    MalformedError,
    MediaError,
    NoSuchStreamError,
    translate_av_error,
)
from media_cookbook.kernel.hwaccel import (
    FrameMemory,
    hw_format_for_device,
    negotiate_hw_format,
    offered_hw_formats,
    require_device,
)
from media_cookbook.kernel.resources import ResourceRegistry, ScopedHandle
from media_cookbook.kernel.streams import StreamDescriptor
from media_cookbook.schemas import MediaKind

logger = logging.getLogger(__name__)

_KIND_BY_TYPE = {
    "video": MediaKind.VIDEO,
    "audio": MediaKind.AUDIO,
    "subtitle": MediaKind.SUBTITLE,
}


@dataclass(slots=True)
class DecoderState:
    """An opened decoder bound to one input stream."""

    descriptor: StreamDescriptor
    handle: ScopedHandle
    memory: FrameMemory = FrameMemory.SYSTEM
    hw_format: str | None = None
    frames_decoded: int = 0
    flushed: bool = False

    @property
    def codec_context(self):
        return self.handle.get()

    def decode(self, packet: av.Packet) -> list:
        """Send one packet and receive every frame it completes. Errors propagate to the caller."""
        frames = self.codec_context.decode(packet)
        self.frames_decoded += len(frames)
        return frames

    def flush(self) -> list:
        """Drain buffered frames. Safe to call multiple times -- later calls return an empty list."""
        if self.flushed:
            return []
        self.flushed = True
        try:
            frames = self.codec_context.decode(None)
        except av.error.EOFError:
            return []
        except (av.error.FFmpegError, OSError) as e:
            raise translate_av_error(e, "decoder flush", default=MalformedError) from e
        self.frames_decoded += len(frames)
        return frames


class InputStage:
    """One opened input container."""

    def __init__(self, registry: ResourceRegistry) -> None:
        self._registry = registry
        self._handle: ScopedHandle | None = None
        self._device_type: str | None = None
        self.path: Path | None = None

    @property
    def container(self) -> av.container.InputContainer:
        if self._handle is None:
            raise RuntimeError("input stage is not open")
        return self._handle.get()

    def open(
        self,
        path: str | Path,
        format: str | None = None,
        options: dict[str, str] | None = None,
        hwaccel: str | None = None,
    ) -> "InputStage":
        """
        Open the container and probe its streams.

        Raises:
            NotFoundError: the path cannot be opened.
            MalformedError: the container has no parseable stream information.
            HardwareUnavailableError: *hwaccel* names a device type that is absent.
        """
        self.path = Path(path)
        hw = require_device(hwaccel) if hwaccel else None
        try:
            container = av.open(str(path), "r", format=format, options=options or {}, hwaccel=hw)
        except (av.error.FFmpegError, OSError, MemoryError) as e:
            raise translate_av_error(e, f"cannot open input '{path}'", default=MalformedError) from e

        self._handle = self._registry.input_container(container)
        self._device_type = hwaccel
        if not container.streams:
            raise MalformedError(f"no parseable streams in '{path}'")

        logger.info(
            "[input] Opened %s (%s): %d streams, %.2fs",
            self.path.name,
            container.format.name,
            len(container.streams),
            (container.duration or 0) / av.time_base,
        )
        return self

    def select_stream(self, kind: MediaKind, best: bool = False) -> int:
        """Index of the stream to decode for *kind*: the framework's best pick or the first match."""
        streams = self._streams_of(kind)
        if not streams:
            raise NoSuchStreamError(f"no {kind.value} stream in '{self.path}'")
        if best:
            chosen = self.container.streams.best(kind.value)
            if chosen is not None:
                return chosen.index
        return streams[0].index

    def _streams_of(self, kind: MediaKind) -> list:
        return [s for s in self.container.streams if _KIND_BY_TYPE.get(s.type) is kind]

    def describe(self, index: int) -> StreamDescriptor:
        stream = self.container.streams[index]
        kind = _KIND_BY_TYPE.get(stream.type)
        if kind is None:
            raise NoSuchStreamError(f"stream #{index} has unsupported type '{stream.type}'")
        ctx = stream.codec_context
        time_base = stream.time_base or Fraction(1, av.time_base)
        if stream.duration is not None:
            duration = float(stream.duration * time_base)
        else:
            duration = (self.container.duration or 0) / av.time_base

        if kind is MediaKind.VIDEO:
            return StreamDescriptor(
                index=index,
                kind=kind,
                codec_name=ctx.name,
                time_base=time_base,
                width=ctx.width,
                height=ctx.height,
                pixel_format=ctx.pix_fmt,
                sample_aspect_ratio=ctx.sample_aspect_ratio,
                frame_rate=stream.average_rate or stream.guessed_rate,
                duration_seconds=duration,
            )
        if kind is MediaKind.AUDIO:
            return StreamDescriptor(
                index=index,
                kind=kind,
                codec_name=ctx.name,
                time_base=time_base,
                sample_rate=ctx.sample_rate,
                channel_layout=ctx.layout.name if ctx.layout else None,
                sample_format=ctx.format.name if ctx.format else None,
                duration_seconds=duration,
            )
        return StreamDescriptor(
            index=index,
            kind=kind,
            codec_name=ctx.name if ctx is not None else "unknown",
            time_base=time_base,
            duration_seconds=duration,
        )

    def open_decoder(self, index: int) -> DecoderState:
        """
        Open the decoder for stream *index*.

        Raises:
            CodecUnavailableError: no decoder is registered for the stream's codec.
            MalformedError: the stream's codec parameters cannot be applied.
        """
        stream = self.container.streams[index]
        ctx = stream.codec_context
        if ctx is None:
            raise CodecUnavailableError(f"no decoder for stream #{index} of '{self.path}'")

        if stream.type == "video":
            ctx.thread_type = "AUTO"
        if settings.decoder_threads:
            ctx.thread_count = settings.decoder_threads

        memory = FrameMemory.SYSTEM
        hw_format = None
        if self._device_type and stream.type == "video":
            hw_format = negotiate_hw_format(offered_hw_formats(ctx.codec), hw_format_for_device(self._device_type))
            if hw_format is not None and ctx.is_hwaccel:
                memory = FrameMemory.DEVICE
            else:
                logger.info(
                    "[input] %s cannot decode to %s, falling back to software",
                    ctx.name,
                    self._device_type,
                )

        try:
            ctx.open(strict=False)
        except (av.error.FFmpegError, OSError, MemoryError) as e:
            raise translate_av_error(e, f"cannot open decoder '{ctx.name}'", default=MalformedError) from e

        descriptor = self.describe(index)
        state = DecoderState(
            descriptor=descriptor,
            handle=self._registry.decoder(ctx),
            memory=memory,
            hw_format=hw_format,
        )
        logger.info(
            "[input] Decoder: stream #%d %s (%s, %s memory)",
            index,
            ctx.name,
            descriptor.kind.value,
            memory.value,
        )
        return state

    def seek(self, seconds: float, stream_index: int) -> None:
        """Seek to the keyframe at or before *seconds* on the given stream."""
        stream = self.container.streams[stream_index]
        offset = int(seconds / stream.time_base) if stream.time_base else int(seconds * av.time_base)
        try:
            self.container.seek(offset, backward=True, any_frame=False, stream=stream)
        except (av.error.FFmpegError, OSError) as e:
            raise translate_av_error(e, f"seek to {seconds:.3f}s failed") from e
        logger.debug("[input] Seeked %s to %.3fs", self.path.name, seconds)

    def packets(self, stream_indices: list[int] | None = None) -> Iterator[av.Packet]:
        """
        Yield demuxed packets for the selected streams, in file order.

        The zero-size flush packets PyAV appends at end of input are skipped;
        the driver runs the decoder drain explicitly.
        """
        container = self.container
        if stream_indices is None:
            streams = list(container.streams)
        else:
            streams = [container.streams[i] for i in stream_indices]
        try:
            for packet in container.demux(streams):
                if packet.size == 0:
                    continue
                yield packet
        except MediaError:
            raise
        except (av.error.FFmpegError, OSError) as e:
            raise translate_av_error(e, f"read from '{self.path}' failed", default=MalformedError) from e

    def close(self) -> None:
        if self._handle is not None:
            self._handle.release()
            self._handle = None
