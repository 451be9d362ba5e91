"""MPQ hashing and block cipher.

Both the name hash and the stream cipher draw from one 1280-entry table of
pseudo-random 32-bit values. The table is generated once at import time and
shared by every archive.
"""

import struct
from enum import IntEnum
from typing import List, Optional, Union

from ..errors import UnsupportedCharacter

MASK32 = 0xFFFFFFFF

HASH_SEED1 = 0x7FED7FED
HASH_SEED2 = 0xEEEEEEEE

TABLE_SIZE = 0x500


class HashType(IntEnum):
    """Hash purposes, each selecting a 256-entry slice of the table."""

    TABLE_OFFSET = 0
    HASH_A = 1
    HASH_B = 2
    TABLE = 3


def build_encryption_table() -> List[int]:
    """Generate the cipher table from its fixed LCG seed."""
    table = [0] * TABLE_SIZE
    seed = 0x00100001
    for i in range(0x100):
        index = i
        for _ in range(5):
            seed = (seed * 125 + 3) % 0x2AAAAB
            high = (seed & 0xFFFF) << 16
            seed = (seed * 125 + 3) % 0x2AAAAB
            low = seed & 0xFFFF
            table[index] = high | low
            index += 0x100
    return table


ENCRYPTION_TABLE = tuple(build_encryption_table())


def normalize_name(name: str) -> str:
    """Convert a path to archive form: backslash separators, upper case."""
    if "/" in name and "\\" not in name:
        name = name.replace("/", "\\")
    return name.upper()


def hash_string(name: str, hash_type: HashType) -> int:
    """Hash a file name for the given purpose.

    Raises:
        UnsupportedCharacter: if the name contains a non-ASCII character.
    """
    seed1 = HASH_SEED1
    seed2 = HASH_SEED2
    base = int(hash_type) << 8
    for char in normalize_name(name):
        ch = ord(char)
        if ch > 0x7F:
            raise UnsupportedCharacter(char)
        value = ENCRYPTION_TABLE[base + ch]
        seed1 = (value ^ (seed1 + seed2)) & MASK32
        seed2 = (ch + seed1 + seed2 + (seed2 << 5) + 3) & MASK32
    return seed1


def base_name(name: str) -> str:
    """Strip everything up to the last path separator."""
    cut = max(name.rfind("\\"), name.rfind("/"))
    return name[cut + 1 :]


def file_key(name: str, block_offset: int = 0, size: int = 0, fix: bool = False) -> int:
    """Derive the decryption key of a stored file.

    The key is the TABLE hash of the file's base name. Files flagged with
    EncryptionFix additionally mix in their block offset and size.
    """
    key = hash_string(base_name(name), HashType.TABLE)
    if fix:
        key = ((key + block_offset) & MASK32) ^ size
    return key


def decrypt_block(
    data: Union[bytearray, memoryview],
    key: int,
    offset: int = 0,
    length: Optional[int] = None,
) -> None:
    """Decrypt data in place as little-endian 32-bit words.

    Only whole words are processed; trailing bytes past the last multiple of
    four are left untouched.
    """
    if length is None:
        length = len(data) - offset
    count = length // 4
    if count <= 0:
        return

    fmt = f"<{count}I"
    words = list(struct.unpack_from(fmt, data, offset))
    table = ENCRYPTION_TABLE
    seed1 = key & MASK32
    seed2 = HASH_SEED2
    for i, word in enumerate(words):
        seed2 = (seed2 + table[0x400 + (seed1 & 0xFF)]) & MASK32
        plain = (word ^ (seed1 + seed2)) & MASK32
        words[i] = plain
        seed1 = ((((~seed1) << 0x15) + 0x11111111) | (seed1 >> 0x0B)) & MASK32
        seed2 = (plain + seed2 + (seed2 << 5) + 3) & MASK32
    struct.pack_into(fmt, data, offset, *words)
