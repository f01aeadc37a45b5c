"""
Parser for the framework's filter-graph description language.

    graph  := chain (';' chain)*
    chain  := filter (',' filter)*
    filter := ('[' label ']')* name ('=' args)? ('[' label ']')*

Argument text follows the framework's tokenizer rules: a backslash escapes
the next character, single quotes protect a literal run, and unescaped
trailing whitespace is dropped. The resulting args string is handed to the
filter as-is, so option-level escaping (``\\:``) survives.

Linking follows the same conventions as ``avfilter_graph_parse``: inside a
chain, a filter's unlabeled outputs feed the next filter's inputs (after
its labeled inputs); labels connect pads across chains. The planner adds
two defaults: an unlabeled input at the head of a chain is bound to the
next unused source pad, and an unlabeled output at the end of the last
chain is bound to the sink.
"""

from dataclasses import dataclass, field

from media_cookbook.errors import BadFilterError

_NAME_STOP = set("=,;[] \t\r\n")
_ARG_STOP = set("[],;")
_WHITESPACE = " \t\r\n"

SINK_LABEL = "out"


@dataclass(slots=True)
class FilterNode:
    name: str
    args: str | None = None
    inputs: list[str] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class Link:
    """One edge of the instantiated graph. Endpoints are ``(chain, index)`` or ``("src"|"sink", label)``."""

    source: tuple
    source_pad: int
    target: tuple
    target_pad: int


class _Reader:
    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos] in _WHITESPACE:
            self.pos += 1

    def error(self, message: str) -> BadFilterError:
        return BadFilterError(f"{message} at offset {self.pos} in filter graph '{self.text}'")

    def labels(self) -> list[str]:
        found = []
        self.skip_ws()
        while self.peek() == "[":
            end = self.text.find("]", self.pos + 1)
            if end < 0:
                raise self.error("unterminated pad label")
            label = self.text[self.pos + 1 : end].strip()
            if not label:
                raise self.error("empty pad label")
            found.append(label)
            self.pos = end + 1
            self.skip_ws()
        return found

    def name(self) -> str:
        start = self.pos
        while self.pos < len(self.text) and self.text[self.pos] not in _NAME_STOP:
            self.pos += 1
        return self.text[start : self.pos]

    def token(self) -> str:
        """Read an argument token, honouring backslash escapes and single quotes."""
        self.skip_ws()
        out: list[str] = []
        keep = 0  # length of ``out`` up to the last character that must not be trimmed
        text = self.text
        while self.pos < len(text):
            c = text[self.pos]
            if c == "\\":
                if self.pos + 1 >= len(text):
                    raise self.error("dangling escape")
                out.append(text[self.pos + 1])
                keep = len(out)
                self.pos += 2
            elif c == "'":
                end = text.find("'", self.pos + 1)
                if end < 0:
                    raise self.error("unterminated quote")
                out.extend(text[self.pos + 1 : end])
                keep = len(out)
                self.pos = end + 1
            elif c in _ARG_STOP:
                break
            else:
                out.append(c)
                if c not in _WHITESPACE:
                    keep = len(out)
                self.pos += 1
        return "".join(out[:keep])


def parse_graph(description: str) -> list[list[FilterNode]]:
    """Parse a filter-graph description into chains of filter nodes."""
    reader = _Reader(description)
    chains: list[list[FilterNode]] = []
    chain: list[FilterNode] = []

    reader.skip_ws()
    if reader.at_end():
        raise reader.error("empty filter graph")

    while True:
        inputs = reader.labels()
        name = reader.name()
        if not name:
            raise reader.error("expected a filter name")
        args = None
        if reader.peek() == "=":
            reader.pos += 1
            args = reader.token()
        outputs = reader.labels()
        chain.append(FilterNode(name=name, args=args, inputs=inputs, outputs=outputs))

        reader.skip_ws()
        if reader.at_end():
            chains.append(chain)
            break
        sep = reader.peek()
        reader.pos += 1
        if sep == ",":
            continue
        if sep == ";":
            chains.append(chain)
            chain = []
            reader.skip_ws()
            if reader.at_end():
                break
            continue
        reader.pos -= 1
        raise reader.error(f"unexpected character '{sep}'")
    return chains


def plan_links(
    chains: list[list[FilterNode]],
    pad_counts: list[list[tuple[int, int]]],
    sources: list[str],
    sink: str = SINK_LABEL,
) -> list[Link]:
    """
    Resolve every pad of the parsed graph to a link.

    Args:
        chains: Parsed graph, as returned by ``parse_graph``.
        pad_counts: ``(n_inputs, n_outputs)`` for each node, same shape as *chains*.
        sources: Source pad labels, in pad order (``["in"]`` or ``["in0", "in1", ...]``).
        sink: Sink pad label.

    Raises:
        BadFilterError: a pad is left unconnected, or a label is used twice or never.
    """
    links: list[Link] = []
    # label -> (endpoint, pad) still waiting for a consumer / a producer
    open_outputs: dict[str, tuple[tuple, int]] = {name: (("src", name), 0) for name in sources}
    open_inputs: dict[str, tuple[tuple, int]] = {sink: (("sink", sink), 0)}
    unused_sources = list(sources)

    def connect_output(label: str, endpoint: tuple, pad: int) -> None:
        if label in open_inputs:
            target, target_pad = open_inputs.pop(label)
            links.append(Link(endpoint, pad, target, target_pad))
        elif label in open_outputs:
            raise BadFilterError(f"pad label '{label}' is produced twice")
        else:
            open_outputs[label] = (endpoint, pad)

    def connect_input(label: str, endpoint: tuple, pad: int) -> None:
        if label in open_outputs:
            source, source_pad = open_outputs.pop(label)
            if label in unused_sources:
                unused_sources.remove(label)
            links.append(Link(source, source_pad, endpoint, pad))
        elif label in open_inputs:
            raise BadFilterError(f"pad label '{label}' is consumed twice")
        else:
            open_inputs[label] = (endpoint, pad)

    for ci, chain in enumerate(chains):
        carried: list[tuple[tuple, int]] = []
        for fi, node in enumerate(chain):
            endpoint = (ci, fi)
            n_in, n_out = pad_counts[ci][fi]

            labels = list(node.inputs)
            if fi == 0 and not labels and n_in > 0 and unused_sources:
                labels = [unused_sources[0]]
            if len(labels) + len(carried) != n_in:
                raise BadFilterError(
                    f"filter '{node.name}' has {n_in} input pad(s) but {len(labels) + len(carried)} connection(s)"
                )
            for pad, label in enumerate(labels):
                connect_input(label, endpoint, pad)
            for offset, (source, source_pad) in enumerate(carried):
                links.append(Link(source, source_pad, endpoint, len(labels) + offset))

            if len(node.outputs) > n_out:
                raise BadFilterError(f"filter '{node.name}' has only {n_out} output pad(s)")
            for pad, label in enumerate(node.outputs):
                connect_output(label, endpoint, pad)
            carried = [(endpoint, pad) for pad in range(len(node.outputs), n_out)]

        if carried:
            is_last = ci == len(chains) - 1
            if is_last and len(carried) == 1 and sink in open_inputs:
                connect_output(sink, *carried[0])
            else:
                raise BadFilterError(f"unconnected output pad on filter '{chains[ci][-1].name}'")

    if open_inputs:
        raise BadFilterError(f"unconnected input label(s): {', '.join(sorted(open_inputs))}")
    if open_outputs:
        raise BadFilterError(f"unconnected output label(s): {', '.join(sorted(open_outputs))}")
    return links


def escape_value(value: str) -> str:
    """Escape a literal option value (e.g. a file path) for embedding in a description."""
    escaped = value.replace("\\", "\\\\").replace(":", "\\:")
    return "'" + escaped.replace("'", "'\\''") + "'"
