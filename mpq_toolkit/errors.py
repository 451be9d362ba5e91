"""Exceptions raised while reading MPQ archives."""


class MPQError(Exception):
    """Base class for archive reader errors."""


class FormatError(MPQError):
    """The archive header is not something this reader understands."""


class UnsupportedFeature(MPQError):
    """A stored file uses a feature the reader does not implement."""


class UnsupportedCompression(UnsupportedFeature):
    """A sector is tagged with an unknown compression method."""

    def __init__(self, tag: int):
        super().__init__(f"Unsupported sector compression: 0x{tag:02X}")
        self.tag = tag


class CorruptArchive(MPQError):
    """Stored data is structurally inconsistent."""


class ExplodeError(CorruptArchive):
    """A PKWare implode stream could not be decoded."""

    def __init__(self, msg: str, partial: bytes = b""):
        super().__init__(msg)
        self.partial = partial


class UnsupportedCharacter(MPQError, ValueError):
    """A file name contains a character outside the hash table range."""

    def __init__(self, char: str):
        super().__init__(f"Unable to hash character: {char!r} (code {ord(char)})")
        self.char = char
