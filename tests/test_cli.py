import os

import sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../src')))

from wcp_mcp import cli

TRACE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), 'traces'))
EXAMPLE_FILE = os.path.join(TRACE_DIR, 'example.wcp')


def test_convert_to_stdout(capsys):
    assert cli.main([EXAMPLE_FILE]) == 0
    out = capsys.readouterr().out
    assert out.startswith("$date\n")
    assert "#30\n" in out


def test_convert_to_file(tmp_path):
    output = tmp_path / "out.vcd"
    assert cli.main([EXAMPLE_FILE, "-o", str(output)]) == 0
    assert "$enddefinitions $end" in output.read_text()


def test_parse_error_exit_status(tmp_path, capsys):
    """Test that parse errors are reported on stderr with status 1."""
    bad = tmp_path / "bad.wcp"
    bad.write_text("nothing useful")
    assert cli.main([str(bad)]) == 1
    assert "Missing section: HEADER" in capsys.readouterr().err
