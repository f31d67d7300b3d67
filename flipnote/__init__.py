"""flipnote package entrypoints."""

from .audio import AdpcmDecoder, PcmAudio, mix_channels
from .config import Config
from .errors import FlipnoteError, FormatError, TruncatedInputError
from .flipnote import Flipnote
from .flipnote_decoder import FlipnoteDecoder
from .frame import Frame

__all__ = [
    'AdpcmDecoder',
    'Config',
    'FlipnoteError',
    'Flipnote',
    'FlipnoteDecoder',
    'FormatError',
    'Frame',
    'PcmAudio',
    'TruncatedInputError',
    'mix_channels',
]
