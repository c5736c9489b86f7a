"""CHORUS Engine Graph — typed builder for media engine invocations.

Every argument handed to the engine is assembled from these types,
never from free-form strings:
  - OutputFormat: the canonical codec / bitrate / rate / layout / container
  - Filter, FilterChain, FilterGraph: filter expressions with validated values
  - ConcatManifest: ffconcat input list with quoted, escaped paths
  - Invocation: inputs + filters + output → argv

Paths only ever appear as plain argv entries or inside the manifest,
so an untrusted filename cannot change the meaning of a filter graph.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# Filter option values and stream labels are restricted to a safe alphabet.
_SAFE_VALUE = re.compile(r"^[A-Za-z0-9_.+\-]+$")
_SAFE_LABEL = re.compile(r"^[A-Za-z0-9_:]+$")
_SAFE_NAME = re.compile(r"^[a-z0-9_]+$")


# ── Output Format ────────────────────────────────────────


@dataclass(frozen=True)
class OutputFormat:
    """Canonical encode parameters."""

    codec: str = "libmp3lame"
    bitrate: str = "128k"
    sample_rate: int = 44100
    channels: int = 2
    container: str = "mp3"

    @classmethod
    def from_settings(cls, settings: Any) -> OutputFormat:
        return cls(
            codec=settings.output_codec,
            bitrate=settings.output_bitrate,
            sample_rate=settings.output_sample_rate,
            channels=settings.output_channels,
            container=settings.output_container,
        )

    def args(self) -> list[str]:
        args = [
            "-vn",
            "-map_metadata", "-1",
            "-c:a", self.codec,
            "-b:a", self.bitrate,
            "-ar", str(self.sample_rate),
            "-ac", str(self.channels),
        ]
        if self.container == "mp3":
            # No Xing/ID3 header: a pipe cannot be seeked back to patch it,
            # and an empty encode must stay (near) zero bytes.
            args.extend(["-write_xing", "0", "-id3v2_version", "0"])
        args.extend(["-f", self.container])
        return args


# ── Filters ──────────────────────────────────────────────


def _format_value(value: object) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return format(value, "g")
    text = str(value)
    if not _SAFE_VALUE.match(text):
        raise ValueError(f"Unsafe filter option value: {text!r}")
    return text


def _check_label(label: str) -> str:
    if not _SAFE_LABEL.match(label):
        raise ValueError(f"Unsafe stream label: {label!r}")
    return label


@dataclass(frozen=True)
class Filter:
    """One filter with ordered key=value options."""

    name: str
    options: tuple[tuple[str, object], ...] = ()

    def __post_init__(self) -> None:
        if not _SAFE_NAME.match(self.name):
            raise ValueError(f"Unsafe filter name: {self.name!r}")
        for key, _ in self.options:
            if not _SAFE_NAME.match(key):
                raise ValueError(f"Unsafe filter option name: {key!r}")

    def render(self) -> str:
        if not self.options:
            return self.name
        opts = ":".join(f"{k}={_format_value(v)}" for k, v in self.options)
        return f"{self.name}={opts}"


def filt(name: str, **options: object) -> Filter:
    """Shorthand: filt("amix", inputs=3) → Filter("amix", (("inputs", 3),))."""
    return Filter(name, tuple(options.items()))


@dataclass(frozen=True)
class FilterChain:
    """Filters applied in series, optionally between labelled pads."""

    filters: tuple[Filter, ...]
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()

    def render(self) -> str:
        if not self.filters:
            raise ValueError("Empty filter chain")
        ins = "".join(f"[{_check_label(label)}]" for label in self.inputs)
        outs = "".join(f"[{_check_label(label)}]" for label in self.outputs)
        return ins + ",".join(f.render() for f in self.filters) + outs


@dataclass(frozen=True)
class FilterGraph:
    """A complex filter graph with a single mapped output pad."""

    chains: tuple[FilterChain, ...]
    output_label: str

    def render(self) -> str:
        return ";".join(chain.render() for chain in self.chains)

    def args(self) -> list[str]:
        return [
            "-filter_complex", self.render(),
            "-map", f"[{_check_label(self.output_label)}]",
        ]


# ── Concat Manifest ──────────────────────────────────────


@dataclass(frozen=True)
class ConcatManifest:
    """ffconcat input list for the concat demuxer."""

    paths: tuple[Path, ...]

    @staticmethod
    def quote(path: Path) -> str:
        text = str(Path(path).resolve())
        if any(ch in text for ch in ("\n", "\r", "\0")):
            raise ValueError(f"Path cannot be listed in a manifest: {text!r}")
        # Inside single quotes only the quote itself needs escaping.
        return "'" + text.replace("'", "'\\''") + "'"

    def render(self) -> str:
        lines = ["ffconcat version 1.0"]
        lines.extend(f"file {self.quote(p)}" for p in self.paths)
        return "\n".join(lines) + "\n"

    def write(self, target: Path) -> Path:
        target.write_text(self.render(), encoding="utf-8")
        return target


# ── Invocation ───────────────────────────────────────────


@dataclass(frozen=True)
class InputSpec:
    """One engine input and the options that precede its -i."""

    path: Path
    options: tuple[str, ...] = ()

    def args(self) -> list[str]:
        return [*self.options, "-i", str(self.path)]


@dataclass(frozen=True)
class Invocation:
    """A complete transform: inputs → optional filters → canonical output."""

    inputs: tuple[InputSpec, ...]
    output: OutputFormat
    target: str = "pipe:1"
    audio_filter: FilterChain | None = None
    graph: FilterGraph | None = None
    extra: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.inputs:
            raise ValueError("Invocation needs at least one input")
        if self.audio_filter is not None and self.graph is not None:
            raise ValueError("Use either a simple audio filter or a filter graph")

    def argv(self, binary: str) -> list[str]:
        cmd = [binary, "-hide_banner", "-nostdin", "-loglevel", "error", "-y"]
        for spec in self.inputs:
            cmd.extend(spec.args())
        if self.audio_filter is not None:
            cmd.extend(["-af", self.audio_filter.render()])
        if self.graph is not None:
            cmd.extend(self.graph.args())
        cmd.extend(self.extra)
        cmd.extend(self.output.args())
        cmd.append(str(self.target))
        return cmd


# ── Strategy Builders ────────────────────────────────────


def silence_trim_chain(threshold: float, min_duration_s: float) -> FilterChain:
    """Strip leading silence, reverse, strip again, reverse back.

    Only a strip-from-start primitive is needed to trim both ends.
    """
    strip = filt(
        "silenceremove",
        start_periods=1,
        start_duration=float(min_duration_s),
        start_threshold=float(threshold),
    )
    reverse = filt("areverse")
    return FilterChain((strip, reverse, strip, reverse))


def mix_graph(n_inputs: int) -> FilterGraph:
    """Sum all inputs; output lasts as long as the longest input."""
    if n_inputs < 2:
        raise ValueError("Mixing needs at least two inputs")
    chain = FilterChain(
        (
            filt("amix", inputs=n_inputs, duration="longest",
                 dropout_transition=0, normalize=0),
            filt("alimiter", limit=0.95),
        ),
        inputs=tuple(f"{i}:a" for i in range(n_inputs)),
        outputs=("mix",),
    )
    return FilterGraph((chain,), output_label="mix")


def crossfade_graph(duration_s: float) -> FilterGraph:
    """Blend input 0 into input 1 over a fixed-length overlap."""
    if duration_s <= 0:
        raise ValueError("Crossfade duration must be positive")
    chain = FilterChain(
        (filt("acrossfade", d=float(duration_s), c1="tri", c2="tri"),),
        inputs=("0:a", "1:a"),
        outputs=("xf",),
    )
    return FilterGraph((chain,), output_label="xf")
