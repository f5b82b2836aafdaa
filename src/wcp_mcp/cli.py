"""wcp2vcd - convert a WCP trace to VCD.

Usage:
  wcp2vcd trace.wcp                 # VCD on stdout
  wcp2vcd trace.wcp -o trace.vcd
"""

import argparse
import logging
import sys

from . import config
from .errors import WcpParseError
from .parser import parse_wcp_file
from .vcd import write_vcd

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wcp2vcd", description="Convert a WCP trace to VCD")
    parser.add_argument("input", help="WCP file to convert")
    parser.add_argument("-o", "--output", help="VCD file to write (default: stdout)")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Logging level (default: %(default)s)")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), stream=sys.stderr)

    try:
        waveform = parse_wcp_file(args.input)
    except WcpParseError as e:
        print(f"wcp2vcd: {args.input}: {e}", file=sys.stderr)
        return 1

    if args.output:
        with open(args.output, "w") as f:
            write_vcd(waveform, f)
        logger.info(f"Wrote {args.output}")
    else:
        write_vcd(waveform, sys.stdout)
    return 0


if __name__ == "__main__":
    sys.exit(main())
