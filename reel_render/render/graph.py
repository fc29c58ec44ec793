"""
Typed FFmpeg filter graph builder.

Filters are parameter records, chains connect named stream pads, and the
graph keeps track of which labels have been produced and consumed. Nothing
is turned into ``-filter_complex`` text until serialize() is called, which is
the only place option values are escaped.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Literal, Sequence

from reel_render.exceptions import GraphError

logger = logging.getLogger(__name__)

MediaType = Literal["video", "audio"]

# Characters with meaning to the filtergraph parser inside an option value
_ESCAPED_CHARS = ("\\", "'", ":", ",", ";", "[", "]")


def format_number(value: float | int) -> str:
    """Render a number the way the editor prints it: 5.0 -> "5", 0.25 -> "0.25"."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if value == int(value) and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


def escape_value(value: str) -> str:
    """Escape a filter option value so commas in expressions survive parsing."""
    for char in _ESCAPED_CHARS:
        value = value.replace(char, "\\" + char)
    return value


def _render_value(value: Any) -> str:
    if isinstance(value, (int, float)):
        return format_number(value)
    return escape_value(str(value))


@dataclass(frozen=True)
class Filter:
    """A single filter with positional and named options, in order."""

    name: str
    args: tuple[Any, ...] = ()
    options: tuple[tuple[str, Any], ...] = ()

    @classmethod
    def of(cls, name: str, *args: Any, **options: Any) -> "Filter":
        return cls(name=name, args=args, options=tuple(options.items()))

    def option(self, key: str, default: Any = None) -> Any:
        for k, v in self.options:
            if k == key:
                return v
        return default

    def render(self) -> str:
        parts = [_render_value(a) for a in self.args]
        parts.extend(f"{k}={_render_value(v)}" for k, v in self.options)
        if not parts:
            return self.name
        return f"{self.name}=" + ":".join(parts)


@dataclass(frozen=True)
class Stream:
    """A named pad in the graph: either an input stream (``0:v``) or a chain output."""

    label: str
    media: MediaType

    @property
    def is_input(self) -> bool:
        return ":" in self.label

    def pad(self) -> str:
        return f"[{self.label}]"


@dataclass(frozen=True)
class InputSpec:
    """One ``-i`` input plus the input options that precede it."""

    path: str
    options: tuple[str, ...] = ()

    def to_args(self) -> list[str]:
        return [*self.options, "-i", self.path]


@dataclass
class FilterChain:
    inputs: list[Stream]
    filters: list[Filter]
    output: Stream

    def render(self) -> str:
        pads_in = "".join(s.pad() for s in self.inputs)
        body = ",".join(f.render() for f in self.filters)
        return f"{pads_in}{body}{self.output.pad()}"


@dataclass
class FilterGraph:
    """Inputs plus filter chains, validated as they are added."""

    inputs: list[InputSpec] = field(default_factory=list)
    chains: list[FilterChain] = field(default_factory=list)
    _produced: dict[str, Stream] = field(default_factory=dict, repr=False)
    _consumed: set[str] = field(default_factory=set, repr=False)

    def add_input(self, path: str, *options: str) -> int:
        """Declare an input file and return its index."""
        self.inputs.append(InputSpec(path=path, options=tuple(options)))
        return len(self.inputs) - 1

    def input_stream(self, index: int, media: MediaType) -> Stream:
        if not 0 <= index < len(self.inputs):
            raise GraphError(f"Input index {index} is not declared")
        return Stream(label=f"{index}:{'v' if media == 'video' else 'a'}", media=media)

    def chain(
        self,
        inputs: Sequence[Stream],
        filters: Sequence[Filter],
        output: str,
        media: MediaType | None = None,
    ) -> Stream:
        """Append ``[in...]f1,f2[output]`` and return the output stream.

        Every non-input label may be consumed exactly once, and output labels
        must be unique.
        """
        if not filters:
            raise GraphError(f"Chain producing [{output}] has no filters")
        if output in self._produced:
            raise GraphError(f"Stream label [{output}] is already defined")
        for stream in inputs:
            if stream.is_input:
                index = int(stream.label.split(":", 1)[0])
                if not 0 <= index < len(self.inputs):
                    raise GraphError(f"Input index {index} is not declared")
                continue
            if stream.label not in self._produced:
                raise GraphError(f"Stream [{stream.label}] is consumed before it is produced")
            if stream.label in self._consumed:
                raise GraphError(f"Stream [{stream.label}] is consumed twice")
            self._consumed.add(stream.label)

        if media is None:
            if not inputs:
                raise GraphError(f"Source chain [{output}] needs an explicit media type")
            media = inputs[0].media

        out = Stream(label=output, media=media)
        self.chains.append(FilterChain(inputs=list(inputs), filters=list(filters), output=out))
        self._produced[output] = out
        return out

    def source(self, filters: Sequence[Filter], output: str, media: MediaType) -> Stream:
        """Append a chain that starts from a source filter (anullsrc, color...)."""
        return self.chain([], filters, output, media=media)

    def dangling(self) -> list[str]:
        """Labels that were produced but never consumed."""
        return [label for label in self._produced if label not in self._consumed]

    def serialize(self, outputs: Sequence[Stream] = ()) -> str:
        """Render the ``-filter_complex`` argument.

        ``outputs`` are the streams that will be ``-map``ped; every other
        produced stream must have been consumed by a chain.
        """
        mapped = {s.label for s in outputs}
        for label in mapped:
            if label not in self._produced:
                raise GraphError(f"Mapped stream [{label}] is not produced by the graph")
        leftover = [label for label in self.dangling() if label not in mapped]
        if leftover:
            raise GraphError(f"Unconnected stream labels: {', '.join(leftover)}")
        return ";".join(chain.render() for chain in self.chains)

    def input_args(self) -> list[str]:
        args: list[str] = []
        for spec in self.inputs:
            args.extend(spec.to_args())
        return args
