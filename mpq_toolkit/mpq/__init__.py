"""MPQ archive reading."""

from .crypto import HashType, decrypt_block, file_key, hash_string
from .header import MPQ_MAGIC, MPQBlockTableEntry, MPQFlags, MPQHashTableEntry, MPQHeader
from .reader import MPQArchive

__all__ = [
    "MPQArchive",
    "MPQHeader",
    "MPQHashTableEntry",
    "MPQBlockTableEntry",
    "MPQFlags",
    "MPQ_MAGIC",
    "HashType",
    "hash_string",
    "decrypt_block",
    "file_key",
]
