"""Data model for parsed WCP (Waveform Control Protocol) traces.

A WCP trace is produced once by the parser and consumed by the VCD exporter
and the waveform store. All records are frozen so a parsed waveform can be
shared between threads without copying.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class WcpHeader:
    """Header fields captured verbatim from the HEADER section."""

    version: str = ""
    timescale: str = ""
    date: str = ""


@dataclass(frozen=True)
class WcpSignal:
    """A declared signal.

    Attributes:
        name: Reference token used by WAVEFORM lines
        path: Slash-delimited hierarchical name (e.g. '/top/clk')
        width: Declared bit width, always >= 1
        signal_type: VCD variable kind ('wire', 'reg', ...)
    """

    name: str
    path: str
    width: int = 1
    signal_type: str = "wire"

    @property
    def path_segments(self) -> List[str]:
        return self.path.split("/")

    @property
    def scope_key(self) -> str:
        """All path segments but the last, rejoined with '/'."""
        segments = self.path_segments
        if len(segments) > 1:
            return "/".join(segments[:-1])
        return ""

    @property
    def leaf_name(self) -> str:
        return self.path_segments[-1] or self.name


@dataclass(frozen=True)
class WcpChange:
    """A single value assignment; `value` is kept exactly as written."""

    time: int
    signal_index: int
    value: str


@dataclass(frozen=True)
class WcpWaveform:
    """A complete parsed trace.

    `changes` keeps file-encounter order and is not sorted by time.
    """

    header: WcpHeader
    signals: Tuple[WcpSignal, ...] = field(default_factory=tuple)
    changes: Tuple[WcpChange, ...] = field(default_factory=tuple)

    def __post_init__(self):
        for change in self.changes:
            if not 0 <= change.signal_index < len(self.signals):
                raise ValueError(
                    f"Change at time {change.time} references signal {change.signal_index}, "
                    f"but only {len(self.signals)} signals are declared"
                )

    def signal_index(self, name: str) -> Optional[int]:
        """Index of the first signal declared with `name`, or None."""
        for index, signal in enumerate(self.signals):
            if signal.name == name:
                return index
        return None

    def timestamps(self) -> List[int]:
        return sorted({change.time for change in self.changes})

    @property
    def end_time(self) -> int:
        return max((change.time for change in self.changes), default=0)

    def changes_for(self, signal_index: int) -> List[WcpChange]:
        """Changes of one signal, ordered by time (stable for equal times)."""
        selected = [c for c in self.changes if c.signal_index == signal_index]
        return sorted(selected, key=lambda c: c.time)
