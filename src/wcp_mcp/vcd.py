"""Render a parsed WCP trace as VCD (Value Change Dump) text.

The output is the subset of VCD that existing decoders (WAL, GTKWave, ...)
accept: a header, `$scope`/`$var` declarations and time-ordered value
changes. Export never fails; values and widths are written as they were
parsed.

Scopes are grouped by the full scope path of each signal, not merged into a
tree. Signals under '/top' and '/top/sub' therefore produce two independent
blocks, each reopening 'top'. Every block is balanced, so the result is always
structurally valid VCD, just not maximally compact.
"""

import logging
from typing import Dict, List, Sequence, TextIO

from .model import WcpChange, WcpSignal, WcpWaveform

logger = logging.getLogger(__name__)

# '!' .. '~'
SINGLE_CHAR_IDS = 94
FIRST_ID_CHAR = 33


def allocate_identifier(index: int) -> str:
    """Return the VCD identifier code of the signal declared at `index`.

    The first 94 signals get a single printable character; later ones get
    '_<index>'. The two bands never overlap since '_' codes are always longer
    than one character.
    """
    if index < 0:
        raise ValueError(f"Signal index must be non-negative: {index}")
    if index < SINGLE_CHAR_IDS:
        return chr(FIRST_ID_CHAR + index)
    return f"_{index}"


def build_scopes(signals: Sequence[WcpSignal]) -> Dict[str, List[int]]:
    """Group signal indices by scope key, in first-encounter order."""
    scopes: Dict[str, List[int]] = {}
    for index, signal in enumerate(signals):
        scopes.setdefault(signal.scope_key, []).append(index)
    return scopes


def scope_segments(scope_key: str) -> List[str]:
    return [part for part in scope_key.split("/") if part]


def group_changes_by_time(changes: Sequence[WcpChange]) -> Dict[int, List[WcpChange]]:
    groups: Dict[int, List[WcpChange]] = {}
    for change in changes:
        groups.setdefault(change.time, []).append(change)
    return groups


def format_value_change(signal: WcpSignal, identifier: str, value: str) -> str:
    if signal.width == 1:
        return f"{value}{identifier}"
    return f"b{value} {identifier}"


def _header_lines(waveform: WcpWaveform) -> List[str]:
    header = waveform.header
    return [
        "$date",
        f"   {header.date}",
        "$end",
        "$version",
        f"   WCP {header.version}",
        "$end",
        f"$timescale {header.timescale} $end",
    ]


def _declaration_lines(waveform: WcpWaveform) -> List[str]:
    lines = []
    for scope_key, indices in build_scopes(waveform.signals).items():
        segments = scope_segments(scope_key)
        for segment in segments:
            lines.append(f"$scope module {segment} $end")
        for index in indices:
            signal = waveform.signals[index]
            lines.append(
                f"$var {signal.signal_type} {signal.width} "
                f"{allocate_identifier(index)} {signal.leaf_name} $end"
            )
        lines.extend("$upscope $end" for _ in segments)
    lines.append("$enddefinitions $end")
    return lines


def _value_change_lines(waveform: WcpWaveform) -> List[str]:
    lines = []
    groups = group_changes_by_time(waveform.changes)
    for time in sorted(groups):
        lines.append(f"#{time}")
        for change in groups[time]:
            signal = waveform.signals[change.signal_index]
            identifier = allocate_identifier(change.signal_index)
            lines.append(format_value_change(signal, identifier, change.value))
    return lines


def wcp_to_vcd(waveform: WcpWaveform) -> str:
    """Convert a parsed WCP trace to VCD text.

    Args:
        waveform: Parsed WCP trace

    Returns:
        str: VCD document, newline terminated
    """
    lines = _header_lines(waveform) + _declaration_lines(waveform) + _value_change_lines(waveform)
    logger.debug(f"Exported {len(waveform.signals)} signals and {len(waveform.changes)} changes to VCD")
    return "\n".join(lines) + "\n"


def write_vcd(waveform: WcpWaveform, stream: TextIO) -> None:
    stream.write(wcp_to_vcd(waveform))
