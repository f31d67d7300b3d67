"""Exceptions raised while decoding a Flipnote container."""


class FlipnoteError(ValueError):
    """Base class for all decode failures."""


class FormatError(FlipnoteError):
    """The input is not a structurally valid Flipnote container."""


class TruncatedInputError(FlipnoteError):
    """Fewer bytes were available than a section declares."""

    def __init__(self, section: str, needed: int, available: int):
        self.section = section
        self.needed = needed
        self.available = available
        super().__init__(
            f"Truncated {section}: need {needed} bytes, got {available}"
        )
