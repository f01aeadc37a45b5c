"""
Pipeline driver: the decode -> [filter] -> encode -> mux control loop.

Architecture:
  InputStage(s) --packets--> DecoderState --frames--> [FilterStage] --frames--> encoder / frame sink
       |                                                                              |
       +--copied packets (copy lanes) -------------------------------> OutputStage <--+

Each configured input is a *lane* bound to one decoder and, when a filter
graph is used, to one source pad (``in`` / ``in0``, ``in1``, ...). Lanes are
read round-robin. The first input may also carry copy lanes: streams of
other kinds that are remuxed without decoding.

The filter graph and the encoder are configured lazily from the first
frames that reach them, so their parameters always describe frames that
actually flow (after any hardware transfer). Copied packets that arrive
before the header is written are held back and written right after it.

Drain runs in a fixed order once input is exhausted (or a window/frame
limit stops reading): decoder flush -> filter EOF + drain -> resampler
flush -> encoder flush -> finalize.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import av

from media_cookbook.configs import settings
from media_cookbook.errors import BadParameterError, MediaError, ResourceExhaustedError, translate_av_error
from media_cookbook.kernel.converters import Rescaler, Resampler
from media_cookbook.kernel.filter_stage import FilterStage, SourcePad, source_names
from media_cookbook.kernel.hwaccel import FrameMemory, require_system_memory
from media_cookbook.kernel.input_stage import DecoderState, InputStage
from media_cookbook.kernel.output_stage import OutputStage, StreamHandle
from media_cookbook.kernel.resources import ResourceRegistry
from media_cookbook.kernel.streams import StreamDescriptor, pad_params_for, rescale, to_seconds
from media_cookbook.schemas import MediaKind, PipelineConfig, TimestampMode

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[MediaKind, int], None]
FrameSink = Callable[[object], None]


def stdout_progress(kind: MediaKind, count: int) -> None:
    print(f"Processed {count} {kind.value} frames", flush=True)


@dataclass(slots=True)
class PipelineStats:
    """Counters for one pipeline run."""

    packets_read: int = 0
    packets_copied: int = 0
    decode_errors: int = 0
    frames_decoded: int = 0
    frames_dropped: int = 0
    frames_filtered: int = 0
    frames_encoded: int = 0  # Frames sent to the encoder (or the frame sink)
    packets_written: int = 0  # Encoded packets muxed
    last_dts: dict[int, int] = field(default_factory=dict)
    elapsed: float = 0.0


@dataclass(slots=True)
class _Lane:
    pad: int
    input: InputStage
    descriptor: StreamDescriptor | None
    decoder: DecoderState | None
    packets: object = None
    copy_streams: dict[int, StreamHandle] = field(default_factory=dict)
    first_frame: object = None
    last_pts: int | None = None
    finished: bool = False
    stopped: bool = False


class PipelineDriver:
    """
    Runs one pipeline described by a ``PipelineConfig``.

    Args:
        config: What to read, filter, encode and write.
        progress: Called as ``progress(kind, count)`` every N frames. Defaults to stdout.
        frame_sink: When set, final frames go here instead of to an encoder (analysis passes).
        extra_pads: Additional filter source pads after the lanes' pads, fed by *on_filter_ready*.
        on_filter_ready: Called with the ``FilterStage`` right after it is configured.
        registry: Resource registry to use; a fresh one is created when omitted.
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        progress: ProgressCallback | None = stdout_progress,
        frame_sink: FrameSink | None = None,
        extra_pads: list[SourcePad] | tuple = (),
        on_filter_ready: Callable[[FilterStage], None] | None = None,
        registry: ResourceRegistry | None = None,
    ) -> None:
        if config.transcode and config.encoder is None and frame_sink is None:
            raise BadParameterError("a transcoding pipeline needs an encoder or a frame sink")
        if extra_pads and config.filter is None:
            raise BadParameterError("extra filter pads require a filter graph")
        if frame_sink is not None and config.output is not None:
            raise BadParameterError("a frame sink replaces the output; do not set both")
        self.config = config
        self.progress = progress
        self.frame_sink = frame_sink
        self.extra_pads = list(extra_pads)
        self.on_filter_ready = on_filter_ready
        self.registry = registry or ResourceRegistry()
        self.stats = PipelineStats()

        self._lanes: list[_Lane] = []
        self._output: OutputStage | None = None
        self._encoded: StreamHandle | None = None
        self._filter: FilterStage | None = None
        self._pending_frames: list[tuple[int, object]] = []
        self._pending_copies: list[tuple[StreamHandle, object]] = []
        self._rescaler: Rescaler | None = None
        self._resampler: Resampler | None = None
        self._counter = 0
        self._last_out_pts: int | None = None
        self._limit_reached = False

    # --- Public API ---------------------------------------------------------

    def run(self) -> PipelineStats:
        started = time.monotonic()
        try:
            self._run()
        except BaseException as e:
            if self._output is not None:
                self._output.abort()
            if isinstance(e, MemoryError) and not isinstance(e, MediaError):
                raise ResourceExhaustedError(f"out of memory: {e}") from e
            if isinstance(e, av.error.FFmpegError | OSError) and not isinstance(e, MediaError):
                raise translate_av_error(e, "pipeline failed") from e
            raise
        finally:
            self.registry.release_all()
            self.stats.elapsed = time.monotonic() - started

        logger.info(
            "[driver] Complete: %d packets read, %d decoded, %d filtered, %d encoded, %d written, "
            "%d copied, %d decode errors, %.1fs",
            self.stats.packets_read,
            self.stats.frames_decoded,
            self.stats.frames_filtered,
            self.stats.frames_encoded,
            self.stats.packets_written,
            self.stats.packets_copied,
            self.stats.decode_errors,
            self.stats.elapsed,
        )
        return self.stats

    @property
    def output(self) -> OutputStage | None:
        return self._output

    @property
    def encoded_stream(self) -> StreamHandle | None:
        return self._encoded

    # --- Setup --------------------------------------------------------------

    def _run(self) -> None:
        config = self.config

        # Phase 1: inputs and decoders
        for pad, spec in enumerate(config.inputs):
            stage = InputStage(self.registry).open(spec.path, spec.format, spec.options, spec.hwaccel)
            lane = _Lane(pad=pad, input=stage, descriptor=None, decoder=None)
            read_indices = []
            if config.transcode:
                index = stage.select_stream(spec.kind, best=spec.best)
                lane.decoder = stage.open_decoder(index)
                lane.descriptor = lane.decoder.descriptor
                read_indices.append(index)
                if config.start_time:
                    stage.seek(config.start_time, index)
            self._lanes.append(lane)
            if pad == 0:
                copy_indices = [stage.select_stream(kind) for kind in config.copy_kinds]
                if set(copy_indices) & set(read_indices):
                    raise BadParameterError("a stream cannot be both transcoded and copied")
                read_indices.extend(copy_indices)
                lane.copy_streams = {i: None for i in copy_indices}
                if config.start_time and not config.transcode and copy_indices:
                    stage.seek(config.start_time, copy_indices[0])
            lane.packets = stage.packets(read_indices)

        # Phase 2: output container and copy streams
        if config.output is not None and (config.encoder is not None or config.copy_kinds):
            self._output = OutputStage(self.registry).create(config.output, config.output_format, config.output_options)
            primary = self._lanes[0]
            for index in list(primary.copy_streams):
                template = primary.input.container.streams[index]
                primary.copy_streams[index] = self._output.add_copy_stream(template)
            if not config.transcode or config.encoder is None:
                self._output.write_header()

        # Phase 3: main loop
        self._read_loop()

        # Phase 4: drain
        self._drain()

    # --- Main loop ----------------------------------------------------------

    def _read_loop(self) -> None:
        active = list(self._lanes)
        while active:
            for lane in list(active):
                if self._lane_should_stop(lane):
                    self._finish_lane(lane)
                    active.remove(lane)
                    continue
                packet = next(lane.packets, None)
                if packet is None:
                    self._finish_lane(lane)
                    active.remove(lane)
                    continue
                with self.registry.scoped_unref(packet):
                    self.stats.packets_read += 1
                    index = packet.stream.index
                    if index in lane.copy_streams:
                        self._copy_packet(lane, packet)
                    elif lane.decoder is not None and index == lane.descriptor.index:
                        self._decode_packet(lane, packet)

    def _lane_should_stop(self, lane: _Lane) -> bool:
        if lane.stopped:
            return True
        if self._limit_reached and lane.decoder is not None:
            return True
        return False

    def _decode_packet(self, lane: _Lane, packet) -> None:
        try:
            frames = lane.decoder.decode(packet)
        except MemoryError as e:
            raise ResourceExhaustedError(f"decoder out of memory: {e}") from e
        except av.error.FFmpegError as e:
            # A single corrupt packet is not fatal
            self.stats.decode_errors += 1
            logger.warning(
                "[driver] Decoder rejected packet (stream #%d, pts=%s): %s",
                lane.descriptor.index,
                packet.pts,
                e,
            )
            return
        for frame in frames:
            self._on_decoded(lane, frame)

    def _copy_packet(self, lane: _Lane, packet) -> None:
        handle = lane.copy_streams[packet.stream.index]
        end = self._window_end()
        if end is not None:
            seconds = to_seconds(packet.pts, packet.time_base)
            if seconds is not None and seconds >= end:
                if lane.decoder is None:
                    lane.stopped = True
                return
        start = self.config.start_time
        if start and handle.kind is MediaKind.AUDIO and packet.pts is not None:
            # Audio packets decode independently, so whole packets before the window go
            packet_end = to_seconds(packet.pts + (packet.duration or 0), packet.time_base)
            if packet_end is not None and packet_end <= start:
                return
        if self._output.header_written:
            self._write_copy(handle, packet)
        else:
            self._pending_copies.append((handle, packet))

    def _write_copy(self, handle: StreamHandle, packet) -> None:
        self._output.write_packet(handle, packet, packet.time_base)
        self.stats.packets_copied += 1

    def _window_end(self) -> float | None:
        if self.config.duration is None:
            return None
        return (self.config.start_time or 0.0) + self.config.duration

    def _on_decoded(self, lane: _Lane, frame) -> None:
        with self.registry.scoped_unref(frame):
            self.stats.frames_decoded += 1
            if lane.decoder.memory is FrameMemory.DEVICE:
                require_system_memory(frame)
            if frame.time_base is None:
                frame.time_base = lane.descriptor.time_base
            if frame.pts is None:
                step = frame.samples if isinstance(frame, av.AudioFrame) else 1
                frame.pts = 0 if lane.last_pts is None else lane.last_pts + step
            lane.last_pts = frame.pts

            seconds = to_seconds(frame.pts, frame.time_base)
            if self.config.start_time and seconds is not None and seconds < self.config.start_time:
                self.stats.frames_dropped += 1
                return
            end = self._window_end()
            if end is not None and seconds is not None and seconds >= end:
                lane.stopped = True
                self.stats.frames_dropped += 1
                return
            if self._limit_reached:
                self.stats.frames_dropped += 1
                return

            if lane.first_frame is None:
                lane.first_frame = frame

            if self.config.filter is None:
                self._emit(frame)
            elif self._filter is None:
                self._pending_frames.append((lane.pad, frame))
                self._maybe_configure_filter()
            else:
                self._filter.push(frame, lane.pad)
                self._pull_filter()

    # --- Filter -------------------------------------------------------------

    def _maybe_configure_filter(self, force: bool = False) -> None:
        waiting = [lane for lane in self._lanes if lane.first_frame is None and not lane.finished]
        if waiting and not force:
            return

        names = source_names(len(self._lanes) + len(self.extra_pads))
        sources = []
        for lane, name in zip(self._lanes, names):
            if lane.first_frame is not None:
                params = pad_params_for(lane.first_frame, lane.descriptor.time_base)
            else:
                params = lane.descriptor.pad_params()
            sources.append(SourcePad(name, params))
        for pad, name in zip(self.extra_pads, names[len(self._lanes) :]):
            sources.append(SourcePad(name, pad.params))

        output_kind = self.config.encoder.kind if self.config.encoder is not None else None
        self._filter = FilterStage(self.config.filter, sources, self.registry, output_kind=output_kind)
        if self.on_filter_ready is not None:
            self.on_filter_ready(self._filter)

        pending, self._pending_frames = self._pending_frames, []
        for pad, frame in pending:
            self._filter.push(frame, pad)
            self._pull_filter()
        for lane in self._lanes:
            if lane.finished:
                self._filter.push(None, lane.pad)
        self._pull_filter()

    def _pull_filter(self) -> None:
        for frame in self._filter.frames():
            with self.registry.scoped_unref(frame):
                self.stats.frames_filtered += 1
                self._emit(frame)

    # --- Encoding -----------------------------------------------------------

    def _emit(self, frame) -> None:
        """Deliver one final frame to the frame sink or the encoder."""
        if self._limit_reached:
            self.stats.frames_dropped += 1
            return
        if self.frame_sink is not None:
            self.frame_sink(frame)
            self._count_frame(MediaKind.AUDIO if isinstance(frame, av.AudioFrame) else MediaKind.VIDEO)
            return

        if self._encoded is None:
            self._open_encoder(first_frame=frame)

        if isinstance(frame, av.AudioFrame):
            for converted in self._resample(frame):
                self._encode(converted)
        else:
            self._encode(self._rescale(frame))

    def _open_encoder(self, first_frame=None) -> None:
        primary = self._lanes[0]
        self._encoded = self._output.add_stream(self.config.encoder, source=primary.descriptor, first_frame=first_frame)
        self._output.write_header()
        pending, self._pending_copies = self._pending_copies, []
        for handle, packet in pending:
            self._write_copy(handle, packet)

    def _rescale(self, frame):
        ctx = self._encoded.codec_context
        if self._rescaler is None:
            self._rescaler = Rescaler(self.registry, ctx.width, ctx.height, ctx.pix_fmt)
        return self._rescaler.convert(frame)

    def _resample(self, frame) -> list:
        if self._resampler is None:
            ctx = self._encoded.codec_context
            if (frame.format.name, frame.layout.name, frame.sample_rate) == (
                ctx.format.name,
                ctx.layout.name,
                ctx.sample_rate,
            ):
                return [frame]
            self._resampler = Resampler(self.registry, ctx.format.name, ctx.layout.name, ctx.sample_rate)
            logger.debug("[driver] Resampling audio to %s %dHz %s", ctx.format.name, ctx.sample_rate, ctx.layout.name)
        return self._resampler.convert(frame)

    def _next_pts(self, frame, ctx) -> int:
        is_audio = isinstance(frame, av.AudioFrame)
        if self.config.timestamp_mode is TimestampMode.COUNTER or frame.pts is None:
            pts = self._counter
        else:
            pts = rescale(frame.pts, frame.time_base or ctx.time_base, ctx.time_base)
        if self._last_out_pts is not None and pts <= self._last_out_pts and not is_audio:
            pts = self._last_out_pts + 1
        self._counter = pts + (frame.samples if is_audio else 1)
        self._last_out_pts = pts
        return pts

    def _encode(self, frame) -> None:
        handle = self._encoded
        ctx = handle.codec_context
        frame.pts = self._next_pts(frame, ctx)
        frame.time_base = ctx.time_base
        for packet in self._output.encode(handle, frame):
            self._write_encoded(packet)
        self._count_frame(handle.kind)

    def _write_encoded(self, packet) -> None:
        with self.registry.scoped_unref(packet):
            self._output.write_packet(self._encoded, packet, packet.time_base)
            self.stats.packets_written += 1

    def _count_frame(self, kind: MediaKind) -> None:
        self.stats.frames_encoded += 1
        count = self.stats.frames_encoded
        interval = self.config.progress_every
        if interval is None:
            interval = settings.video_progress_interval if kind is MediaKind.VIDEO else settings.audio_progress_interval
        if self.progress is not None and interval and count % interval == 0:
            self.progress(kind, count)
        if self.config.max_frames is not None and count >= self.config.max_frames:
            self._limit_reached = True

    # --- Drain --------------------------------------------------------------

    def _finish_lane(self, lane: _Lane) -> None:
        if lane.finished:
            return
        if lane.decoder is not None and self.config.flush_on_eof:
            for frame in lane.decoder.flush():
                self._on_decoded(lane, frame)
        lane.finished = True
        if self._filter is not None:
            self._filter.push(None, lane.pad)
            self._pull_filter()
        elif self.config.filter is not None and self.config.transcode:
            self._maybe_configure_filter()
        logger.debug("[driver] Lane %d finished", lane.pad)

    def _drain(self) -> None:
        config = self.config
        if config.transcode and config.filter is not None:
            if self._filter is None:
                self._maybe_configure_filter(force=True)
            if config.flush_on_eof:
                self._pull_filter()
                if not self._filter.drained:
                    logger.warning("[driver] Filter graph did not reach EOF after all inputs ended")

        if self._output is None:
            return

        if config.transcode and config.encoder is not None and self.frame_sink is None:
            if self._encoded is None:
                logger.warning("[driver] No frames reached the encoder")
                self._open_encoder()
            elif config.flush_on_eof:
                if self._resampler is not None:
                    for frame in self._resampler.flush():
                        self._encode(frame)
                for packet in self._output.flush_encoder(self._encoded):
                    self._write_encoded(packet)

        self._output.finalize()
        for handle in self._output.streams:
            if handle.last_dts is not None:
                self.stats.last_dts[handle.stream.index] = handle.last_dts


def run_pipeline(config: PipelineConfig, **kwargs) -> PipelineStats:
    """Build a driver for *config* and run it."""
    return PipelineDriver(config, **kwargs).run()

