"""
Filter stage: a configured filter graph with typed source pads and one sink.

Source pads are parameterized from the frames the input stage produces;
the graph refuses frames whose format differs from those parameters
(``MalformedError``). Sink-side format constraints requested by a recipe
are appended as ``format`` / ``aformat`` / ``asetnsamples`` nodes ahead
of the sink. Construction is all-or-nothing: any parse, instantiation or
configuration failure raises ``BadFilterError``.

The stage is not thread-safe; the driver serializes push and pull.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass

import av

from media_cookbook.errors import BadFilterError, MalformedError, MediaError, translate_av_error
from media_cookbook.kernel.filter_dsl import SINK_LABEL, parse_graph, plan_links
from media_cookbook.kernel.hwaccel import require_system_memory
from media_cookbook.kernel.resources import ResourceRegistry
from media_cookbook.kernel.streams import AudioPadParams, PadParams, VideoPadParams
from media_cookbook.schemas import FilterGraphSpec, MediaKind

logger = logging.getLogger(__name__)


class _Signal:
    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return self.name


# Pull results other than a frame
AGAIN = _Signal("AGAIN")  # The graph needs more input
EOF = _Signal("EOF")  # Drain complete


@dataclass(slots=True, frozen=True)
class SourcePad:
    """A named graph input and the exact frame format it accepts."""

    name: str
    params: PadParams

    @property
    def kind(self) -> MediaKind:
        return MediaKind.VIDEO if isinstance(self.params, VideoPadParams) else MediaKind.AUDIO


def source_names(count: int) -> list[str]:
    """Pad labels for *count* sources: ``in`` for one, ``in0``, ``in1``, ... for several."""
    if count == 1:
        return ["in"]
    return [f"in{i}" for i in range(count)]


class FilterStage:
    """
    Configured filter graph with ``len(sources)`` source pads and one sink.

    Usage:
        stage = FilterStage(spec, [SourcePad("in", params)], registry)
        stage.push(frame)
        for out in stage.frames():
            ...
        stage.push(None)  # end of stream, starts the filter drain
        for out in stage.frames():
            ...
    """

    def __init__(
        self,
        spec: FilterGraphSpec,
        sources: list[SourcePad],
        registry: ResourceRegistry,
        output_kind: MediaKind | None = None,
    ) -> None:
        if not sources:
            raise BadFilterError("a filter graph needs at least one source pad")
        self.spec = spec
        self.sources = sources
        self.output_kind = output_kind or sources[0].kind
        self.frames_pushed = 0
        self.frames_pulled = 0
        self._eof_pads: set[int] = set()
        self._drained = False

        graph = av.filter.Graph()
        self._graph_handle = registry.filter_graph(graph)
        try:
            self._src_contexts, self._sink_context = self._build(graph)
            graph.configure()
        except MediaError:
            raise
        except (av.error.FFmpegError, ValueError, OSError) as e:
            message = f"cannot configure filter graph '{spec.description}'"
            raise translate_av_error(e, message, default=BadFilterError) from e

        logger.info(
            "[filter] Configured '%s' with %d source pad(s) -> %s sink",
            spec.description,
            len(sources),
            self.output_kind.value,
        )

    def _add(self, graph: av.filter.Graph, name: str, args: str | None):
        filter_name, _, instance = name.partition("@")
        try:
            if instance:
                return graph.add(filter_name, args, name=instance)
            return graph.add(filter_name, args)
        except (av.error.FFmpegError, ValueError) as e:
            raise BadFilterError(f"cannot create filter '{name}' with args '{args or ''}': {e}") from e

    def _sink_constraints(self) -> list[tuple[str, str]]:
        spec = self.spec
        nodes = []
        if self.output_kind is MediaKind.VIDEO:
            if spec.pixel_format:
                nodes.append(("format", f"pix_fmts={spec.pixel_format}"))
            return nodes
        opts = []
        if spec.sample_format:
            opts.append(f"sample_fmts={spec.sample_format}")
        if spec.sample_rate:
            opts.append(f"sample_rates={spec.sample_rate}")
        if spec.channel_layout:
            opts.append(f"channel_layouts={spec.channel_layout}")
        if opts:
            nodes.append(("aformat", ":".join(opts)))
        if spec.frame_size:
            nodes.append(("asetnsamples", f"n={spec.frame_size}:p=0"))
        return nodes

    def _build(self, graph: av.filter.Graph):
        chains = parse_graph(self.spec.description)
        names = source_names(len(self.sources))

        src_contexts = []
        endpoints = {}
        for name, pad in zip(names, self.sources):
            buffer_name = "buffer" if pad.kind is MediaKind.VIDEO else "abuffer"
            ctx = self._add(graph, buffer_name, pad.params.buffer_args())
            src_contexts.append(ctx)
            endpoints[("src", name)] = ctx

        # Sink side: constraint nodes, then the buffer sink
        sink_name = "buffersink" if self.output_kind is MediaKind.VIDEO else "abuffersink"
        sink_context = self._add(graph, sink_name, None)
        head = sink_context
        for filter_name, args in reversed(self._sink_constraints()):
            ctx = self._add(graph, filter_name, args)
            ctx.link_to(head, 0, 0)
            head = ctx
        endpoints[("sink", SINK_LABEL)] = head

        pad_counts = []
        for ci, chain in enumerate(chains):
            counts = []
            for fi, node in enumerate(chain):
                ctx = self._add(graph, node.name, node.args)
                endpoints[(ci, fi)] = ctx
                counts.append((len(ctx.inputs), len(ctx.outputs)))
            pad_counts.append(counts)

        for link in plan_links(chains, pad_counts, names):
            endpoints[link.source].link_to(endpoints[link.target], link.source_pad, link.target_pad)
        return src_contexts, sink_context

    @property
    def drained(self) -> bool:
        return self._drained

    def push(self, frame, pad: int = 0) -> None:
        """
        Hand a frame to source pad *pad*; ``None`` signals end of stream on that pad.

        Raises:
            MalformedError: the frame's format differs from the pad's declared parameters.
        """
        source = self.sources[pad]
        if frame is None:
            if pad in self._eof_pads:
                return
            self._eof_pads.add(pad)
            self._src_contexts[pad].push(None)
            logger.debug("[filter] EOF on pad %s", source.name)
            return

        require_system_memory(frame)
        if not source.params.matches(frame):
            raise MalformedError(_mismatch_message(source, frame))
        try:
            self._src_contexts[pad].push(frame)
        except (av.error.FFmpegError, OSError) as e:
            raise translate_av_error(e, f"push to filter pad '{source.name}' failed", default=MalformedError) from e
        self.frames_pushed += 1

    def pull(self):
        """Receive one filtered frame, or ``AGAIN`` / ``EOF``."""
        if self._drained:
            return EOF
        try:
            frame = self._sink_context.pull()
        except av.error.BlockingIOError:
            return AGAIN
        except av.error.EOFError:
            self._drained = True
            return EOF
        except (av.error.FFmpegError, OSError) as e:
            raise translate_av_error(e, "pull from filter graph failed", default=BadFilterError) from e
        self.frames_pulled += 1
        return frame

    def frames(self) -> Iterator:
        """Pull until the graph needs more input or has drained."""
        while True:
            result = self.pull()
            if result is AGAIN or result is EOF:
                return
            yield result

    def close(self) -> None:
        self._graph_handle.release()


def _describe(frame) -> str:
    if isinstance(frame, av.AudioFrame):
        return f"{frame.format.name} {frame.sample_rate}Hz {frame.layout.name}"
    if isinstance(frame, av.VideoFrame):
        return f"{frame.width}x{frame.height} {frame.format.name}"
    return type(frame).__name__


def _mismatch_message(source: SourcePad, frame) -> str:
    params = source.params
    if isinstance(params, AudioPadParams):
        want = f"{params.sample_format} {params.sample_rate}Hz {params.channel_layout}"
    else:
        want = f"{params.width}x{params.height} {params.pixel_format}"
    return f"frame format {_describe(frame)} does not match filter pad '{source.name}' ({want})"
