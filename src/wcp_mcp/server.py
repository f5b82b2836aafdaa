"""MCP server for WCP (Waveform Control Protocol) traces.

This server lets LLMs open WCP traces, inspect their signal hierarchy and
value changes, convert them to VCD, and run WAL (Waveform Analysis Language)
expressions against them. VCD and FST files are accepted too and are handed
to WAL directly.
"""

import asyncio
import json
import logging
import os
import re
from typing import Any, Dict, List

from mcp.server import Server
from mcp.server.models import InitializationOptions
from mcp.server.stdio import stdio_server
from mcp.server.lowlevel import NotificationOptions
from mcp.types import TextContent, Tool

from wal.eval import SEval
from wal.core import read_wal_sexpr

from . import __version__, config
from .store import LoadedWaveform, WaveformStore
from .vcd import write_vcd

logger = logging.getLogger(__name__)
logging.basicConfig(level=config.LOG_LEVEL)

app = Server(config.SERVER_NAME)

_store = WaveformStore()

_WAVEFORM_FILE_PROPERTY = {
    "type": "string",
    "description": "Path to waveform file (.wcp, .vcd, .fst)",
}


@app.list_tools()
async def list_tools() -> List[Tool]:
    """Return list of available waveform tools."""
    return [
            Tool(
                name="get_signal_list",
                description="Get list of signals and their widths from a waveform file",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "waveform_file": _WAVEFORM_FILE_PROPERTY,
                        "pattern": {
                            "type": "string",
                            "description": "Optional regex pattern to filter signals (e.g., '/top/.*', 'tb\\.dut')",
                            "default": "",
                        },
                    },
                    "required": ["waveform_file"],
                },
            ),
            Tool(
                name="get_hierarchy",
                description="Get the scope hierarchy of a waveform file as JSON",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "waveform_file": _WAVEFORM_FILE_PROPERTY,
                    },
                    "required": ["waveform_file"],
                },
            ),
            Tool(
                name="get_signal_changes",
                description="Get the value changes of a WCP signal within a time range (inclusive)",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "waveform_file": {
                            "type": "string",
                            "description": "Path to .wcp file",
                        },
                        "signal_name": {
                            "type": "string",
                            "description": "Signal id (e.g., 'clk') or path (e.g., '/top/clk')",
                        },
                        "start_time": {
                            "type": "integer",
                            "description": "Start time in timescale units",
                            "default": 0,
                        },
                        "end_time": {
                            "type": "integer",
                            "description": "End time in timescale units (0 = end of trace)",
                            "default": 0,
                        },
                    },
                    "required": ["waveform_file", "signal_name"],
                },
            ),
            Tool(
                name="get_waveform_info",
                description="Get header fields and size of a WCP trace",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "waveform_file": {
                            "type": "string",
                            "description": "Path to .wcp file",
                        },
                    },
                    "required": ["waveform_file"],
                },
            ),
            Tool(
                name="convert_wcp_to_vcd",
                description="Convert a WCP trace to a VCD file",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "waveform_file": {
                            "type": "string",
                            "description": "Path to .wcp file",
                        },
                        "output_file": {
                            "type": "string",
                            "description": "Path of the VCD file to write (default: input path with .vcd suffix)",
                            "default": "",
                        },
                    },
                    "required": ["waveform_file"],
                },
            ),
            Tool(
                name="get_waveform_length",
                description="Get the number of time steps in the waveform, as seen by WAL",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "waveform_file": _WAVEFORM_FILE_PROPERTY,
                    },
                    "required": ["waveform_file"],
                },
            ),
            Tool(
                name="execute_wal_expression",
                description="""Execute WAL (Waveform Analysis Language) expressions for advanced signal analysis.

WCP traces are converted to VCD first; signal names use '.' between scopes
(e.g. '/top/clk' becomes 'top.clk').

Examples:
• (count (= top.clk 1)) - Count clock high steps
• (find (&& (= top.clk 1) (= top.data 0))) - Find clock high with data low
• (length (find true)) - Total number of time steps""",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "waveform_file": _WAVEFORM_FILE_PROPERTY,
                        "expression": {
                            "type": "string",
                            "description": "WAL expression to execute",
                        },
                    },
                    "required": ["waveform_file", "expression"],
                },
            ),
    ]


@app.call_tool()
async def call_tool(tool_name: str, arguments: Dict[str, Any]):
    """Route tool calls to appropriate handlers."""
    try:
        if tool_name == "get_signal_list":
            return await _get_signal_list(arguments)
        elif tool_name == "get_hierarchy":
            return await _get_hierarchy(arguments)
        elif tool_name == "get_signal_changes":
            return await _get_signal_changes(arguments)
        elif tool_name == "get_waveform_info":
            return await _get_waveform_info(arguments)
        elif tool_name == "convert_wcp_to_vcd":
            return await _convert_wcp_to_vcd(arguments)
        elif tool_name == "get_waveform_length":
            return await _get_waveform_length(arguments)
        elif tool_name == "execute_wal_expression":
            return await _execute_wal_expression(arguments)
        else:
            return [TextContent(type="text", text=f"Unknown tool: {tool_name}")]
    except Exception as e:
        logger.error(f"Error in {tool_name}: {e}")
        return [TextContent(type="text", text=f"Error: {str(e)}")]


async def _load_waveform(waveform_file: str) -> LoadedWaveform:
    """Open a waveform file through the shared store (cached by path)."""
    return _store.open_file(waveform_file)


async def _load_wcp(waveform_file: str) -> LoadedWaveform:
    loaded = await _load_waveform(waveform_file)
    if not loaded.is_wcp:
        raise ValueError(f"{waveform_file} is not a WCP file")
    return loaded


def _bits(width: int) -> str:
    return f"{width} {'bit' if width == 1 else 'bits'}"


async def _get_signal_list(args: Dict[str, Any]) -> List[TextContent]:
    """List signals of a waveform file.

    Args:
        args: Dictionary containing:
            - waveform_file: Path to waveform file
            - pattern: Optional regex pattern to filter signal names

    Returns:
        List of TextContent with formatted signal list
    """
    waveform_file = args["waveform_file"]
    pattern = args.get("pattern", "")

    loaded = await _load_waveform(waveform_file)
    if loaded.is_wcp:
        entries = [(s.path, s.width) for s in loaded.waveform.signals]
    else:
        container = loaded.container()
        entries = [(s, container.signal_width(s)) for s in container.signals]

    try:
        if pattern:
            regex = re.compile(pattern)
            entries = [(name, width) for name, width in entries if regex.search(name)]

        result_lines = [f"Signals in {waveform_file}:"]
        if pattern:
            result_lines.append(f"Filter pattern: {pattern}")

        for name, width in entries:
            result_lines.append(f"  {name} [{_bits(width)}]")

        if not entries:
            if pattern:
                result_lines.append("  No signals found matching regex pattern.")
            else:
                result_lines.append("  No signals found in waveform file.")

    except re.error as e:
        result_lines = [
            f"Signals in {waveform_file}:",
            f"Invalid regex pattern '{pattern}': {e}",
            "Please provide a valid regex pattern."
        ]

    return [TextContent(type="text", text="\n".join(result_lines))]


async def _get_hierarchy(args: Dict[str, Any]) -> List[TextContent]:
    waveform_file = args["waveform_file"]
    await _load_waveform(waveform_file)
    hierarchy = _store.get_hierarchy(waveform_file)
    return [TextContent(type="text", text=json.dumps(hierarchy, indent=2))]


async def _get_signal_changes(args: Dict[str, Any]) -> List[TextContent]:
    """Get value changes of a WCP signal within a time range.

    Args:
        args: Dictionary containing:
            - waveform_file: Path to .wcp file
            - signal_name: Signal id or full path
            - start_time: Start time (optional, default: 0)
            - end_time: End time (optional, default: end of trace)

    Returns:
        List of TextContent with the change list
    """
    waveform_file = args["waveform_file"]
    signal_name = args["signal_name"]
    start_time = args.get("start_time", 0)
    end_time = args.get("end_time", 0)

    loaded = await _load_wcp(waveform_file)
    waveform = loaded.waveform

    index = waveform.signal_index(signal_name)
    if index is None:
        index = next((i for i, s in enumerate(waveform.signals) if s.path == signal_name), None)
    if index is None:
        return [TextContent(
            type="text",
            text=f"Error: Signal '{signal_name}' not found in {waveform_file}"
        )]

    signal = waveform.signals[index]
    actual_end_time = end_time if end_time else waveform.end_time
    changes = _store.get_changes(waveform_file, index, start_time, actual_end_time)

    result_lines = [
        f"Signal changes for '{signal.name}' ({signal.path}):",
        f"  Width: {_bits(signal.width)}",
        f"  Type: {signal.signal_type}",
        "",
    ]
    if changes:
        result_lines.extend(f"  Time {c['time']}: {c['value']}" for c in changes)
    else:
        result_lines.append("No changes in time range.")

    result_lines.append("")
    result_lines.append(f"Time range analyzed: {start_time} to {actual_end_time}")
    return [TextContent(type="text", text="\n".join(result_lines))]


async def _get_waveform_info(args: Dict[str, Any]) -> List[TextContent]:
    waveform_file = args["waveform_file"]

    loaded = await _load_wcp(waveform_file)
    waveform = loaded.waveform
    header = waveform.header

    result_lines = [
        f"Waveform file: {waveform_file}",
        f"Version: {header.version}",
        f"Timescale: {header.timescale}",
        f"Date: {header.date}",
        f"Signals: {len(waveform.signals)}",
        f"Changes: {len(waveform.changes)}",
        f"Timestamps: {len(waveform.timestamps())}",
        f"End time: {waveform.end_time}",
    ]
    return [TextContent(type="text", text="\n".join(result_lines))]


async def _convert_wcp_to_vcd(args: Dict[str, Any]) -> List[TextContent]:
    waveform_file = args["waveform_file"]
    output_file = args.get("output_file") or os.path.splitext(waveform_file)[0] + ".vcd"

    loaded = await _load_wcp(waveform_file)
    with open(output_file, "w") as f:
        write_vcd(loaded.waveform, f)

    logger.info(f"Converted {waveform_file} to {output_file}")
    result_lines = [
        f"Converted {waveform_file} to VCD",
        f"Output file: {output_file}",
        f"Signals: {len(loaded.waveform.signals)}",
        f"Timestamps: {len(loaded.waveform.timestamps())}",
    ]
    return [TextContent(type="text", text="\n".join(result_lines))]


async def _get_waveform_length(args: Dict[str, Any]) -> List[TextContent]:
    """Get the length of the waveform file in WAL time steps.

    Args:
        args: Dictionary containing:
            - waveform_file: Path to waveform file

    Returns:
        List of TextContent with waveform length information
    """
    waveform_file = args["waveform_file"]

    loaded = await _load_waveform(waveform_file)

    try:
        evaluator = SEval(loaded.container())
        waveform_length = evaluator.eval(read_wal_sexpr("(length (find true))"))

        result_lines = [
            f"Waveform file: {waveform_file}",
            f"Length: {waveform_length} time steps",
            f"Time range: 0 to {waveform_length - 1}",
            f"Method: WAL (length (find true))"
        ]

    except Exception as e:
        result_lines = [
            f"Waveform file: {waveform_file}",
            f"Error getting waveform length: {str(e)}"
        ]

    return [TextContent(type="text", text="\n".join(result_lines))]


async def _execute_wal_expression(args: Dict[str, Any]) -> List[TextContent]:
    """Execute WAL expression on a waveform file.

    Args:
        args: Dictionary containing:
            - waveform_file: Path to waveform file
            - expression: WAL expression to execute

    Returns:
        List of TextContent with expression execution results
    """
    waveform_file = args["waveform_file"]
    expression = args["expression"]

    loaded = await _load_waveform(waveform_file)
    container = loaded.container()

    try:
        evaluator = SEval(container)
        result = evaluator.eval(read_wal_sexpr(expression))

        result_lines = [
            f"WAL Expression: {expression}",
            f"Waveform file: {waveform_file}",
            "",
            f"Result: {result}",
            f"Result type: {type(result).__name__}"
        ]

        if isinstance(result, list) and len(result) > 5:
            result_lines.append(f"Result length: {len(result)}")
            result_lines.append("First few elements:")
            for i, item in enumerate(result[:5]):
                result_lines.append(f"  [{i}]: {item}")
            result_lines.append(f"  ... and {len(result) - 5} more")

    except Exception as e:
        signals = loaded.signal_names()
        result_lines = [
            f"WAL Expression: {expression}",
            f"Waveform file: {waveform_file}",
            "",
            f"Execution Error: {str(e)}",
            "",
            f"Available signals: {', '.join(signals[:5])}{'...' if len(signals) > 5 else ''}",
        ]

    return [TextContent(type="text", text="\n".join(result_lines))]


async def main():
    """Main entry point for the MCP server.

    Starts the server using stdio transport for communication with MCP clients.
    """
    async with stdio_server() as (read_stream, write_stream):
        await app.run(
            read_stream,
            write_stream,
            InitializationOptions(
                server_name=config.SERVER_NAME,
                server_version=__version__,
                capabilities=app.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={},
                ),
            ),
        )


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
