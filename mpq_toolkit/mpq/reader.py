"""MPQ archive reader and extractor."""

import logging
import struct
import threading
from pathlib import Path
from typing import BinaryIO, Dict, Iterable, Iterator, List, Optional, Tuple

from ..errors import CorruptArchive, FormatError, UnsupportedFeature
from ..utils.binary import BinaryReader
from .compression import decompress_sector
from .crypto import MASK32, HashType, decrypt_block, file_key, hash_string
from .header import (
    BLOCK_TABLE_KEY_NAME,
    HASH_TABLE_KEY_NAME,
    HEADER_SIZE,
    MPQBlockTableEntry,
    MPQHashTableEntry,
    MPQHeader,
)

logger = logging.getLogger(__name__)

LISTFILE_NAME = "(listfile)"


class MPQArchive:
    """Read-only reader for MPQ (format version 1) archives.

    The header and both lookup tables are loaded on first use and kept for the
    lifetime of the object. Closing only releases the file handle; any later
    access reopens it.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._file: Optional[BinaryIO] = None
        self._header: Optional[MPQHeader] = None
        self._hash_table: Dict[Tuple[int, int], MPQHashTableEntry] = {}
        self._block_table: List[MPQBlockTableEntry] = []
        self._load_lock = threading.Lock()

    def __enter__(self) -> "MPQArchive":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def open(self) -> None:
        """Open the archive and load its header and tables."""
        self._ensure_open()
        self.header

    def close(self) -> None:
        """Close the archive file. Safe to call repeatedly."""
        if self._file:
            self._file.close()
            self._file = None

    @property
    def closed(self) -> bool:
        return self._file is None

    @property
    def header(self) -> MPQHeader:
        if self._header is None:
            with self._load_lock:
                if self._header is None:
                    self._load_tables()
        return self._header

    @property
    def hash_table(self) -> Dict[Tuple[int, int], MPQHashTableEntry]:
        """Used hash table entries keyed by (hash_b, hash_a)."""
        self.header
        return self._hash_table

    @property
    def block_table(self) -> List[MPQBlockTableEntry]:
        self.header
        return self._block_table

    def _ensure_open(self) -> BinaryIO:
        if self._file is None:
            self._file = open(self.path, "rb")
        return self._file

    def _read(self, offset: int, size: int) -> bytearray:
        reader = BinaryReader(self._ensure_open())
        return bytearray(reader.read_at(offset, size))

    def _load_tables(self) -> None:
        """Read the header, then decrypt and index the hash and block tables."""
        try:
            header = MPQHeader.from_bytes(self._read(0, HEADER_SIZE))
            hash_data = self._read(header.hash_table_offset, header.hash_table_size)
            block_data = self._read(header.block_table_offset, header.block_table_size)
        except EOFError as e:
            raise FormatError(f"Truncated MPQ archive {self.path}: {e}") from e

        decrypt_block(hash_data, hash_string(HASH_TABLE_KEY_NAME, HashType.TABLE))
        decrypt_block(block_data, hash_string(BLOCK_TABLE_KEY_NAME, HashType.TABLE))

        hash_table: Dict[Tuple[int, int], MPQHashTableEntry] = {}
        for entry in MPQHashTableEntry.parse_table(hash_data):
            if entry.is_used:
                # First entry wins; locale and platform are ignored
                hash_table.setdefault((entry.hash_b, entry.hash_a), entry)

        self._hash_table = hash_table
        self._block_table = MPQBlockTableEntry.parse_table(block_data)
        self._header = header

        logger.debug(
            "Loaded %s: sector size %d, %d hash entries (%d used), %d blocks",
            self.path,
            header.sector_size,
            header.hash_table_entries,
            len(hash_table),
            header.block_table_entries,
        )

    def get_hash_entry(self, filename: str) -> Optional[MPQHashTableEntry]:
        """Find the hash table entry for a file name."""
        key = (hash_string(filename, HashType.HASH_B), hash_string(filename, HashType.HASH_A))
        return self.hash_table.get(key)

    def get_block_entry(self, filename: str) -> Optional[MPQBlockTableEntry]:
        """Find the block table entry for a file name, if the file exists."""
        hash_entry = self.get_hash_entry(filename)
        if hash_entry is None or hash_entry.block_index >= len(self._block_table):
            return None

        block = self._block_table[hash_entry.block_index]
        if not block.exists:
            return None
        return block

    def exists(self, filename: str) -> bool:
        """Check whether a file is stored in the archive."""
        return self.get_block_entry(filename) is not None

    def extract(self, filename: str) -> Optional[bytes]:
        """Extract a single file from the archive.

        Returns None if the file is not stored in the archive.

        Raises:
            UnsupportedFeature: for single-unit or CRC-checked files, or an
                unknown sector compression.
            CorruptArchive: if the stored sectors are inconsistent.
        """
        block = self.get_block_entry(filename)
        if block is None:
            return None
        return self._extract_block(filename, block)

    def _extract_block(self, filename: str, block: MPQBlockTableEntry) -> bytes:
        if block.is_single_unit:
            raise UnsupportedFeature(f"{filename}: single unit files are not supported")
        if block.has_crc:
            raise UnsupportedFeature(f"{filename}: sector CRCs are not supported")

        if block.archived_size == 0 or block.size == 0:
            return b""
        if block.size == 1:
            return b"\x00"

        key = 0
        if block.is_encrypted:
            key = file_key(filename, block.offset, block.size, block.is_encryption_fix)

        sector_size = self.header.sector_size
        sectors = block.sector_count(sector_size)
        table_size = (sectors + 1) * 4

        try:
            data = self._read(block.offset, block.archived_size)
        except EOFError as e:
            raise CorruptArchive(f"{filename}: stored data is truncated: {e}") from e
        if table_size > len(data):
            raise CorruptArchive(
                f"{filename}: sector offset table ({table_size} bytes) exceeds stored size {len(data)}"
            )

        if block.is_encrypted:
            decrypt_block(data, (key - 1) & MASK32, 0, table_size)
        offsets = struct.unpack_from(f"<{sectors + 1}I", data)

        logger.debug(
            "Extracting %s: %d bytes in %d sectors, encrypted=%s",
            filename,
            block.size,
            sectors,
            block.is_encrypted,
        )

        chunks: List[bytes] = []
        for i in range(sectors):
            current_offset = offsets[i]
            next_offset = offsets[i + 1]
            stored_size = next_offset - current_offset

            if next_offset < current_offset:
                raise CorruptArchive(f"{filename}: sector {i} ends before it starts")
            if stored_size > sector_size:
                raise CorruptArchive(f"{filename}: sector {i} is larger than the sector size")
            if current_offset > block.archived_size or next_offset > block.archived_size:
                raise CorruptArchive(f"{filename}: sector {i} overflows the stored data")

            if block.is_encrypted:
                decrypt_block(data, (key + i) & MASK32, current_offset, stored_size)

            start = i * sector_size
            expected = min(sector_size, block.size - start)

            # Sectors that did not shrink are stored as-is
            if stored_size == sector_size or stored_size == expected:
                chunks.append(bytes(data[current_offset : current_offset + expected]))
                continue

            if stored_size == 0:
                raise CorruptArchive(f"{filename}: sector {i} is empty")

            tag = data[current_offset]
            payload = bytes(data[current_offset + 1 : next_offset])
            decompressed = decompress_sector(tag, payload, expected)
            if len(decompressed) != expected:
                raise CorruptArchive(
                    f"{filename}: sector {i} decompressed to {len(decompressed)} bytes, expected {expected}"
                )
            chunks.append(decompressed)

        return b"".join(chunks)

    def list_files(self) -> List[str]:
        """List file names recorded in the archive's own listfile."""
        data = self.extract(LISTFILE_NAME)
        if not data:
            return []
        text = data.decode("utf-8", errors="replace")
        return [line.strip() for line in text.splitlines() if line.strip()]

    def extract_to(self, filenames: Iterable[str], output_dir: Path) -> Iterator[Tuple[str, Path]]:
        """Extract the named files to the output directory.

        Yields (filename, output_path) for each file that exists in the
        archive; missing names are skipped.
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        for filename in filenames:
            data = self.extract(filename)
            if data is None:
                continue

            parts = [p for p in filename.replace("\\", "/").split("/") if p not in ("", ".", "..")]
            output_path = output_dir.joinpath(*parts)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_bytes(data)

            yield filename, output_path
