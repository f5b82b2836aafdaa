"""Exceptions raised while parsing WCP input or querying the waveform store."""


class WcpParseError(Exception):
    """Base class for all WCP parse failures."""


class InvalidFormatError(WcpParseError):
    """A WAVEFORM line carries a time field that is not an unsigned 64-bit integer."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Invalid WCP format: {detail}")


class WcpIOError(WcpParseError):
    """The input stream could not be read or decoded."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"IO error: {detail}")


class MissingSectionError(WcpParseError):
    """A required section never produced any content."""

    def __init__(self, section: str):
        self.section = section
        super().__init__(f"Missing section: {section}")


class WaveformStoreError(Exception):
    """Lookup failure in the waveform store (unknown file, bad signal ref...)."""
