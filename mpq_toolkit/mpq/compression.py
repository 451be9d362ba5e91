"""Sector decompression, dispatched on the leading method tag."""

import bz2
import zlib
from enum import IntEnum

from ..errors import CorruptArchive, UnsupportedCompression
from .explode import explode


class CompressionType(IntEnum):
    """Sector compression method tags."""

    HUFFMAN = 0x01
    ZLIB = 0x02
    PKWARE = 0x08
    BZIP2 = 0x10


def decompress_zlib(payload: bytes, max_size: int) -> bytes:
    decompressor = zlib.decompressobj()
    try:
        output = decompressor.decompress(payload, max_size)
    except zlib.error as e:
        raise CorruptArchive(f"Zlib sector failed to decompress: {e}") from e
    if not decompressor.eof and len(output) < max_size:
        raise CorruptArchive(f"Zlib sector is truncated after {len(output)} bytes")
    return output


def decompress_bzip2(payload: bytes, max_size: int) -> bytes:
    decompressor = bz2.BZ2Decompressor()
    try:
        output = decompressor.decompress(payload, max_size)
    except (OSError, EOFError, ValueError) as e:
        raise CorruptArchive(f"BZip2 sector failed to decompress: {e}") from e
    if not decompressor.eof and len(output) < max_size:
        raise CorruptArchive(f"BZip2 sector is truncated after {len(output)} bytes")
    return output


def decompress_pkware(payload: bytes, max_size: int) -> bytes:
    return explode(payload)[:max_size]


_DECOMPRESSORS = {
    CompressionType.ZLIB: decompress_zlib,
    CompressionType.PKWARE: decompress_pkware,
    CompressionType.BZIP2: decompress_bzip2,
}


def decompress_sector(tag: int, payload: bytes, max_size: int) -> bytes:
    """Decompress one sector payload (the bytes after the tag).

    The result is capped at max_size bytes.

    Raises:
        UnsupportedCompression: for any tag without a decoder.
        CorruptArchive: if the payload does not decode.
    """
    try:
        decompressor = _DECOMPRESSORS[CompressionType(tag)]
    except (ValueError, KeyError):
        raise UnsupportedCompression(tag) from None
    return decompressor(payload, max_size)
