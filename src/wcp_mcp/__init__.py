"""WCP MCP Server - WCP waveform parsing, VCD export and analysis.

This package parses WCP (Waveform Control Protocol), a small line-oriented
text format for digital-signal traces, and re-emits parsed traces as VCD. A
Model Context Protocol (MCP) server exposes the traces to LLMs, reusing WAL
(Waveform Analysis Language) for analysis of the converted VCD.

Key features:
- Section-based WCP parser
- WCP to VCD conversion
- Hierarchy and signal-range queries
- WAL expression interface

Supported formats: WCP, plus VCD and FST (via WAL)
"""

__version__ = "0.1.0"

from .errors import (
    InvalidFormatError,
    MissingSectionError,
    WaveformStoreError,
    WcpIOError,
    WcpParseError,
)
from .model import WcpChange, WcpHeader, WcpSignal, WcpWaveform
from .parser import parse_wcp, parse_wcp_bytes, parse_wcp_file, parse_wcp_string
from .vcd import allocate_identifier, build_scopes, wcp_to_vcd, write_vcd
