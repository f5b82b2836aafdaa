"""Section-based parser for the WCP text format.

A WCP document is made of three sections, each opened and closed by a literal
marker line::

    HEADER
    version: 1.0
    timescale: 1ns
    date: 2026-02-11
    END_HEADER
    SIGNALS
    clk: /top/clk width:1 type:wire
    data: /top/data width:8 type:reg
    END_SIGNALS
    WAVEFORM
    0: clk=0, data=00
    10: clk=1
    END_WAVEFORM

Blank lines and lines starting with '#' are skipped everywhere. The grammar is
deliberately lax: apart from a non-numeric WAVEFORM time, malformed content is
ignored rather than reported.
"""

import io
import logging
import re
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

from .errors import InvalidFormatError, MissingSectionError, WcpIOError
from .model import WcpChange, WcpHeader, WcpSignal, WcpWaveform

logger = logging.getLogger(__name__)

MAX_TIME = 2**64 - 1

_UNSIGNED_RE = re.compile(r"\+?[0-9]+")


class Section(Enum):
    HEADER = "HEADER"
    SIGNALS = "SIGNALS"
    WAVEFORM = "WAVEFORM"


# marker line -> section it opens (None closes whatever is open)
SECTION_MARKERS: Dict[str, Optional[Section]] = {
    "HEADER": Section.HEADER,
    "END_HEADER": None,
    "SIGNALS": Section.SIGNALS,
    "END_SIGNALS": None,
    "WAVEFORM": Section.WAVEFORM,
    "END_WAVEFORM": None,
}

HEADER_KEYS = ("version", "timescale", "date")


def _parse_unsigned(text: str) -> Optional[int]:
    if not _UNSIGNED_RE.fullmatch(text):
        return None
    return int(text)


def _parse_width(text: str) -> int:
    width = _parse_unsigned(text)
    if width is None or width < 1:
        return 1
    return width


class _WaveformBuilder:
    """Accumulates header fields, signals and changes while lines are scanned."""

    def __init__(self):
        self.header: Optional[Dict[str, str]] = None
        self.signals: List[WcpSignal] = []
        self.changes: List[WcpChange] = []
        self.dropped = 0
        # first declared index for each name
        self._index_by_name: Dict[str, int] = {}

    def add_header_line(self, line: str) -> None:
        if self.header is None:
            self.header = {key: "" for key in HEADER_KEYS}

        key, sep, value = line.partition(":")
        if not sep:
            return
        key = key.strip()
        if key in self.header:
            self.header[key] = value.strip()

    def add_signal_line(self, line: str) -> None:
        # sig_id: /top/clk width:1 type:wire
        sig_id, sep, rest = line.partition(":")
        if not sep:
            return
        parts = rest.split()
        if not parts:
            return

        width = 1
        signal_type = "wire"
        for option in parts[1:]:
            key, sep, value = option.partition(":")
            if not sep:
                continue
            if key == "width":
                width = _parse_width(value)
            elif key == "type":
                signal_type = value

        name = sig_id.strip()
        self._index_by_name.setdefault(name, len(self.signals))
        self.signals.append(WcpSignal(name=name, path=parts[0], width=width, signal_type=signal_type))

    def add_waveform_line(self, line: str) -> None:
        # 0: sig1=0, sig2=00
        time_str, sep, values_str = line.partition(":")
        if not sep:
            return
        time = _parse_unsigned(time_str.strip())
        if time is None or time > MAX_TIME:
            raise InvalidFormatError(f"Invalid time: {time_str}")

        for assignment in values_str.split(","):
            sig_name, sep, value = assignment.strip().partition("=")
            if not sep:
                continue
            index = self._index_by_name.get(sig_name.strip())
            if index is None:
                self.dropped += 1
                continue
            self.changes.append(WcpChange(time=time, signal_index=index, value=value.strip()))

    def build(self) -> WcpWaveform:
        if self.header is None:
            raise MissingSectionError("HEADER")
        if not self.signals:
            raise MissingSectionError("SIGNALS")
        return WcpWaveform(
            header=WcpHeader(**self.header),
            signals=tuple(self.signals),
            changes=tuple(self.changes),
        )


def _decoded_lines(stream: Iterable[Union[bytes, str]]) -> Iterable[str]:
    for raw in stream:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        yield raw


def parse_wcp(stream: Iterable[Union[bytes, str]]) -> WcpWaveform:
    """Parse a WCP document from a binary or text stream.

    The whole stream is consumed before the waveform is built; any error
    aborts the parse and no partial waveform is returned.

    Args:
        stream: File-like object (binary or text) or any iterable of lines

    Returns:
        WcpWaveform: The parsed trace

    Raises:
        InvalidFormatError: A WAVEFORM time field is not an unsigned 64-bit integer
        MissingSectionError: No HEADER content, or no signals declared
        WcpIOError: The stream could not be read or is not valid UTF-8
    """
    builder = _WaveformBuilder()
    section: Optional[Section] = None

    try:
        for raw in _decoded_lines(stream):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue

            if line in SECTION_MARKERS:
                section = SECTION_MARKERS[line]
                continue

            if section is Section.HEADER:
                builder.add_header_line(line)
            elif section is Section.SIGNALS:
                builder.add_signal_line(line)
            elif section is Section.WAVEFORM:
                builder.add_waveform_line(line)
    except (OSError, UnicodeDecodeError) as e:
        raise WcpIOError(str(e)) from e

    waveform = builder.build()
    logger.debug(
        f"Parsed WCP trace: {len(waveform.signals)} signals, "
        f"{len(waveform.changes)} changes, {builder.dropped} unresolved assignments dropped"
    )
    return waveform


def parse_wcp_bytes(data: bytes) -> WcpWaveform:
    """Parse a WCP document held in memory (e.g. an uploaded buffer)."""
    return parse_wcp(io.BytesIO(data))


def parse_wcp_string(text: str) -> WcpWaveform:
    return parse_wcp(io.StringIO(text))


def parse_wcp_file(path: str) -> WcpWaveform:
    """Parse a WCP file from disk."""
    logger.info(f"Parsing WCP file: {path}")
    try:
        f = open(path, "rb")
    except OSError as e:
        raise WcpIOError(str(e)) from e
    with f:
        return parse_wcp(f)
