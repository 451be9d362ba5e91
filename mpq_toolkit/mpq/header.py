"""MPQ header, hash table and block table structures."""

import struct
from dataclasses import dataclass
from enum import IntFlag
from typing import List

from ..errors import FormatError
from ..utils.binary import BinaryReader

# MPQ magic bytes
MPQ_MAGIC = b"MPQ\x1a"

HEADER_SIZE = 32
HASH_ENTRY_SIZE = 16
BLOCK_ENTRY_SIZE = 16

# Only the original (version 1) layout is readable
FORMAT_VERSION_1 = 0

# Largest accepted sector size is 512 << 15 (16 MiB)
MAX_SECTOR_SIZE_SHIFT = 15

# Hash table block_index markers for unused slots
HASH_ENTRY_EMPTY = 0xFFFFFFFF
HASH_ENTRY_DELETED = 0xFFFFFFFE

# Names whose TABLE hash keys the two lookup tables
HASH_TABLE_KEY_NAME = "(hash table)"
BLOCK_TABLE_KEY_NAME = "(block table)"


class MPQFlags(IntFlag):
    """Block table entry flags."""

    IMPLODE = 0x00000100
    COMPRESSED = 0x00000200
    ENCRYPTED = 0x00010000
    ENCRYPTION_FIX = 0x00020000
    SINGLE_UNIT = 0x01000000
    HAS_CRC = 0x04000000
    EXISTS = 0x80000000


@dataclass(frozen=True)
class MPQHeader:
    """MPQ archive header (32 bytes at offset 0)."""

    magic: bytes  # 4 bytes: "MPQ\x1a"
    header_size: int  # 4 bytes
    archive_size: int  # 4 bytes
    format_version: int  # 2 bytes: must be 0
    sector_size_shift: int  # 2 bytes: sector size is 512 << shift
    hash_table_offset: int  # 4 bytes
    block_table_offset: int  # 4 bytes
    hash_table_entries: int  # 4 bytes
    block_table_entries: int  # 4 bytes

    @classmethod
    def from_bytes(cls, data: bytes) -> "MPQHeader":
        """Parse and validate a header.

        Raises:
            FormatError: on a short buffer, bad magic, unsupported version or
                an oversized sector size shift.
        """
        if len(data) < HEADER_SIZE:
            raise FormatError(f"MPQ header too small: {len(data)} bytes")

        reader = BinaryReader(data)
        header = cls(
            magic=reader.read_bytes(4),
            header_size=reader.read_u32(),
            archive_size=reader.read_u32(),
            format_version=reader.read_u16(),
            sector_size_shift=reader.read_u16(),
            hash_table_offset=reader.read_u32(),
            block_table_offset=reader.read_u32(),
            hash_table_entries=reader.read_u32(),
            block_table_entries=reader.read_u32(),
        )

        if not header.is_valid:
            raise FormatError(f"Invalid MPQ magic: {header.magic!r}, expected {MPQ_MAGIC!r}")
        if header.format_version != FORMAT_VERSION_1:
            raise FormatError(f"Unsupported MPQ format version: {header.format_version}")
        if header.sector_size_shift > MAX_SECTOR_SIZE_SHIFT:
            raise FormatError(f"Unsupported MPQ sector size shift: {header.sector_size_shift}")
        return header

    @property
    def is_valid(self) -> bool:
        return self.magic == MPQ_MAGIC

    @property
    def sector_size(self) -> int:
        return 512 << self.sector_size_shift

    @property
    def hash_table_size(self) -> int:
        return self.hash_table_entries * HASH_ENTRY_SIZE

    @property
    def block_table_size(self) -> int:
        return self.block_table_entries * BLOCK_ENTRY_SIZE


@dataclass(frozen=True)
class MPQHashTableEntry:
    """Hash table record (16 bytes)."""

    hash_a: int  # 4 bytes
    hash_b: int  # 4 bytes
    locale: int  # 2 bytes
    platform: int  # 2 bytes
    block_index: int  # 4 bytes: index into the block table

    @classmethod
    def parse_table(cls, data: bytes) -> List["MPQHashTableEntry"]:
        """Parse a decrypted hash table."""
        return [cls(*fields) for fields in struct.iter_unpack("<IIHHI", data)]

    @property
    def is_used(self) -> bool:
        return self.block_index not in (HASH_ENTRY_EMPTY, HASH_ENTRY_DELETED)


@dataclass(frozen=True)
class MPQBlockTableEntry:
    """Block table record (16 bytes)."""

    offset: int  # 4 bytes: relative to archive start
    archived_size: int  # 4 bytes: stored size
    size: int  # 4 bytes: uncompressed size
    flags: MPQFlags  # 4 bytes

    @classmethod
    def parse_table(cls, data: bytes) -> List["MPQBlockTableEntry"]:
        """Parse a decrypted block table."""
        return [
            cls(offset, archived_size, size, MPQFlags(flags))
            for offset, archived_size, size, flags in struct.iter_unpack("<IIII", data)
        ]

    def has_flag(self, flag: MPQFlags) -> bool:
        return (self.flags & flag) == flag

    @property
    def exists(self) -> bool:
        return self.has_flag(MPQFlags.EXISTS)

    @property
    def is_encrypted(self) -> bool:
        return self.has_flag(MPQFlags.ENCRYPTED)

    @property
    def is_encryption_fix(self) -> bool:
        return self.has_flag(MPQFlags.ENCRYPTION_FIX)

    @property
    def is_single_unit(self) -> bool:
        return self.has_flag(MPQFlags.SINGLE_UNIT)

    @property
    def has_crc(self) -> bool:
        return self.has_flag(MPQFlags.HAS_CRC)

    def sector_count(self, sector_size: int) -> int:
        return (self.size + sector_size - 1) // sector_size
