"""MPQ Toolkit - read files out of MPQ game archives."""

__version__ = "0.1.0"

from .errors import (
    CorruptArchive,
    ExplodeError,
    FormatError,
    MPQError,
    UnsupportedCharacter,
    UnsupportedCompression,
    UnsupportedFeature,
)
from .mpq import MPQArchive

__all__ = [
    "__version__",
    "MPQArchive",
    "MPQError",
    "FormatError",
    "UnsupportedFeature",
    "UnsupportedCompression",
    "CorruptArchive",
    "ExplodeError",
    "UnsupportedCharacter",
]
