"""Tests for MPQArchive."""

import threading
import zlib

import pytest

from mpq_builder import PKWARE_SAMPLE, PKWARE_SAMPLE_TEXT, StoredFile
from mpq_toolkit.errors import (
    CorruptArchive,
    FormatError,
    UnsupportedCompression,
    UnsupportedFeature,
)
from mpq_toolkit.mpq import MPQArchive, MPQFlags
from mpq_toolkit.mpq.crypto import HashType, hash_string


def sample_text(size: int) -> bytes:
    line = b"The quick brown fox jumps over the lazy dog. "
    return (line * (size // len(line) + 1))[:size]


class TestLookup:
    """Tests for exists() and table loading."""

    def test_exists(self, make_archive):
        path = make_archive([StoredFile("Data\\readme.txt", b"hello world")])
        with MPQArchive(path) as archive:
            assert archive.exists("Data\\readme.txt")
            assert archive.exists("data/README.TXT")
            assert not archive.exists("nonexistent.file")

    def test_missing_file_extract_returns_none(self, make_archive):
        path = make_archive([StoredFile("a.txt", b"abc")])
        with MPQArchive(path) as archive:
            assert archive.extract("b.txt") is None

    def test_missing_exists_flag(self, make_archive):
        path = make_archive([StoredFile("gone.txt", b"deleted data", exists=False)])
        with MPQArchive(path) as archive:
            assert archive.get_hash_entry("gone.txt") is not None
            assert not archive.exists("gone.txt")
            assert archive.extract("gone.txt") is None

    def test_tables_loaded(self, make_archive):
        path = make_archive(
            [StoredFile("one.txt", b"1111"), StoredFile("two.txt", b"2222")],
            hash_table_entries=8,
        )
        with MPQArchive(path) as archive:
            assert archive.header.hash_table_entries == 8
            assert len(archive.hash_table) == 2
            assert len(archive.block_table) == 2

            key = (hash_string("two.txt", HashType.HASH_B), hash_string("two.txt", HashType.HASH_A))
            assert archive.hash_table[key].block_index == 1

    def test_first_hash_entry_wins(self, make_archive):
        files = [
            StoredFile("dup.txt", b"in slot five", hash_slot=5),
            StoredFile("dup.txt", b"in slot three", hash_slot=3),
        ]
        with MPQArchive(make_archive(files)) as archive:
            assert archive.extract("dup.txt") == b"in slot three"
            assert archive.get_hash_entry("dup.txt").block_index == 1

    def test_bad_magic(self, make_archive):
        path = make_archive([StoredFile("a.txt", b"abc")], magic=b"MPQ\x1b")
        with pytest.raises(FormatError):
            MPQArchive(path).open()

    def test_unsupported_version(self, make_archive):
        path = make_archive([StoredFile("a.txt", b"abc")], format_version=1)
        with pytest.raises(FormatError):
            MPQArchive(path).exists("a.txt")

    def test_truncated_tables(self, make_archive):
        path = make_archive([StoredFile("a.txt", b"abc")])
        path.write_bytes(path.read_bytes()[:-8])
        with pytest.raises(FormatError, match="Truncated"):
            MPQArchive(path).open()

    def test_non_ascii_name(self, make_archive):
        path = make_archive([StoredFile("a.txt", b"abc")])
        with MPQArchive(path) as archive:
            with pytest.raises(ValueError):
                archive.exists("ü.txt")


class TestExtract:
    """Tests for extract()."""

    def test_uncompressed_small_file(self, make_archive):
        data = b"stored as-is"
        path = make_archive([StoredFile("plain.txt", data, compress=False)])
        with MPQArchive(path) as archive:
            assert archive.extract("plain.txt") == data

    def test_zlib_multi_sector(self, make_archive):
        data = sample_text(512 * 5 + 100)
        path = make_archive([StoredFile("big.txt", data)], sector_shift=0)
        with MPQArchive(path) as archive:
            block = archive.get_block_entry("big.txt")
            assert block.archived_size < len(data)
            assert archive.extract("big.txt") == data

    def test_full_uncompressed_sectors(self, make_archive):
        data = bytes(range(256)) * 5
        path = make_archive([StoredFile("bin.dat", data, compress=False)], sector_shift=0)
        with MPQArchive(path) as archive:
            assert archive.extract("bin.dat") == data

    def test_mixed_sectors(self, make_archive):
        """Compressible and incompressible sectors in one file."""
        noise = bytes((i * 7919 + 13) % 251 for i in range(512))
        data = b"\x00" * 512 + noise + b"\x00" * 300
        path = make_archive([StoredFile("mixed.bin", data)], sector_shift=0)
        with MPQArchive(path) as archive:
            assert archive.extract("mixed.bin") == data

    def test_pkware_sector(self, make_archive):
        path = make_archive(
            [StoredFile("imploded.txt", PKWARE_SAMPLE_TEXT, sectors=[b"\x08" + PKWARE_SAMPLE])]
        )
        with MPQArchive(path) as archive:
            assert archive.extract("imploded.txt") == PKWARE_SAMPLE_TEXT

    def test_unsupported_compression(self, make_archive):
        path = make_archive(
            [StoredFile("odd.bin", b"sixteen bytes!!!", sectors=[b"\x40junk"])]
        )
        with MPQArchive(path) as archive:
            with pytest.raises(UnsupportedCompression) as exc_info:
                archive.extract("odd.bin")
            assert exc_info.value.tag == 0x40

    def test_empty_file(self, make_archive):
        path = make_archive([StoredFile("empty.txt", b"")])
        with MPQArchive(path) as archive:
            assert archive.exists("empty.txt")
            assert archive.extract("empty.txt") == b""

    def test_zero_archived_size(self, make_archive):
        path = make_archive([StoredFile("hollow.txt", b"abcdef", archived_size=0)])
        with MPQArchive(path) as archive:
            assert archive.extract("hollow.txt") == b""

    def test_one_byte_file(self, make_archive):
        path = make_archive([StoredFile("one.txt", b"Z")])
        with MPQArchive(path) as archive:
            assert archive.extract("one.txt") == b"\x00"

    def test_encrypted(self, make_archive):
        data = sample_text(5000)
        path = make_archive([StoredFile("Scripts\\secret.j", data, encrypted=True)])
        with MPQArchive(path) as archive:
            assert archive.get_block_entry("Scripts\\secret.j").is_encrypted
            assert archive.extract("Scripts\\secret.j") == data

    def test_encrypted_uncompressed(self, make_archive):
        data = bytes(range(256)) * 20 + b"tail"
        path = make_archive(
            [StoredFile("raw.bin", data, compress=False, encrypted=True)], sector_shift=0
        )
        with MPQArchive(path) as archive:
            assert archive.extract("raw.bin") == data

    def test_encryption_fix(self, make_archive):
        data = sample_text(3000)
        files = [
            StoredFile("padding.txt", b"shifts the next block offset"),
            StoredFile("Maps\\fixed.txt", data, encrypted=True, fix=True),
        ]
        path = make_archive(files, sector_shift=0)
        with MPQArchive(path) as archive:
            block = archive.get_block_entry("Maps\\fixed.txt")
            assert block.is_encryption_fix
            assert block.offset > 32
            assert archive.extract("Maps\\fixed.txt") == data

    def test_encrypted_extract_twice(self, make_archive):
        data = sample_text(2000)
        path = make_archive([StoredFile("twice.txt", data, encrypted=True, fix=True)])
        with MPQArchive(path) as archive:
            assert archive.extract("twice.txt") == data
            assert archive.extract("twice.txt") == data
            assert archive.get_block_entry("twice.txt").is_encrypted

    def test_wrong_key_is_detected(self, make_archive):
        """Decrypting with another base name garbles the sector offsets."""
        data = sample_text(2000)
        path = make_archive([StoredFile("dir\\keyed.txt", data, encrypted=True)])
        with MPQArchive(path) as archive:
            block = archive.get_block_entry("dir\\keyed.txt")
            with pytest.raises(CorruptArchive):
                archive._extract_block("dir\\other.txt", block)

    @pytest.mark.parametrize("flag", [MPQFlags.SINGLE_UNIT, MPQFlags.HAS_CRC])
    def test_unsupported_flags(self, make_archive, flag):
        path = make_archive([StoredFile("flagged.txt", sample_text(100), extra_flags=flag)])
        with MPQArchive(path) as archive:
            assert archive.exists("flagged.txt")
            with pytest.raises(UnsupportedFeature):
                archive.extract("flagged.txt")


class TestCorruption:
    """Tests for sector offset validation."""

    def test_offsets_decreasing(self, make_archive):
        data = sample_text(512 * 3)

        def swap(offsets):
            offsets[1], offsets[2] = offsets[2], offsets[1]
            return offsets

        path = make_archive([StoredFile("bad.txt", data, tamper=swap)], sector_shift=0)
        with MPQArchive(path) as archive:
            with pytest.raises(CorruptArchive):
                archive.extract("bad.txt")

    def test_sector_larger_than_sector_size(self, make_archive):
        data = sample_text(512 * 2)

        def grow(offsets):
            offsets[1] = offsets[0] + 600
            return offsets

        path = make_archive([StoredFile("bad.txt", data, tamper=grow)], sector_shift=0)
        with MPQArchive(path) as archive:
            with pytest.raises(CorruptArchive, match="larger"):
                archive.extract("bad.txt")

    def test_offset_past_stored_data(self, make_archive):
        data = sample_text(512 * 2)

        def overflow(offsets):
            return [o + 10000 for o in offsets]

        path = make_archive([StoredFile("bad.txt", data, tamper=overflow)], sector_shift=0)
        with MPQArchive(path) as archive:
            with pytest.raises(CorruptArchive, match="overflows"):
                archive.extract("bad.txt")

    def test_encrypted_corruption(self, make_archive):
        data = sample_text(512 * 3)

        def swap(offsets):
            offsets[1], offsets[2] = offsets[2], offsets[1]
            return offsets

        path = make_archive(
            [StoredFile("bad.txt", data, encrypted=True, tamper=swap)], sector_shift=0
        )
        with MPQArchive(path) as archive:
            with pytest.raises(CorruptArchive):
                archive.extract("bad.txt")

    def test_offset_table_exceeds_stored_size(self, make_archive):
        path = make_archive([StoredFile("short.txt", sample_text(5000), archived_size=4)])
        with MPQArchive(path) as archive:
            with pytest.raises(CorruptArchive):
                archive.extract("short.txt")

    def test_archive_does_not_become_invalid(self, make_archive):
        data = sample_text(512 * 2)

        def swap(offsets):
            offsets[0], offsets[1] = offsets[1], offsets[0]
            return offsets

        files = [StoredFile("bad.txt", data, tamper=swap), StoredFile("good.txt", data)]
        path = make_archive(files, sector_shift=0)
        with MPQArchive(path) as archive:
            with pytest.raises(CorruptArchive):
                archive.extract("bad.txt")
            assert archive.extract("good.txt") == data

    def test_truncated_zlib_sector(self, make_archive):
        data = sample_text(4096)
        payload = zlib.compress(data)
        stored = StoredFile("t.bin", data, sectors=[b"\x02" + payload[: len(payload) // 2]])
        with MPQArchive(make_archive([stored])) as archive:
            with pytest.raises(CorruptArchive, match="truncated"):
                archive.extract("t.bin")

    def test_sector_decompresses_short(self, make_archive):
        data = sample_text(4096)
        stored = StoredFile("t.bin", data, sectors=[b"\x02" + zlib.compress(data[:1000])])
        with MPQArchive(make_archive([stored])) as archive:
            with pytest.raises(CorruptArchive, match="expected 4096"):
                archive.extract("t.bin")

    def test_oversized_file_rejected_before_allocation(self, make_archive):
        """A huge declared size with tiny sectors fails on the first sector."""
        sector = b"\x02" + zlib.compress(b"x" * 100)
        stored = StoredFile("huge.bin", b"", size=0xFFFFFFFF, sectors=[sector] * 256)
        path = make_archive([stored], sector_shift=15)
        with MPQArchive(path) as archive:
            assert archive.header.sector_size == 512 << 15
            with pytest.raises(CorruptArchive, match="sector 0"):
                archive.extract("huge.bin")

    def test_sector_shift_out_of_range(self, make_archive):
        path = make_archive([StoredFile("a.txt", b"abc")], sector_shift=16)
        with pytest.raises(FormatError, match="sector size shift"):
            MPQArchive(path).open()


class TestLifecycle:
    """Tests for lazy loading, close and reopen."""

    def test_lazy_open(self, make_archive):
        path = make_archive([StoredFile("a.txt", b"abc")])
        archive = MPQArchive(path)
        assert archive.closed
        assert archive.exists("a.txt")
        assert not archive.closed
        archive.close()

    def test_close_idempotent(self, make_archive):
        path = make_archive([StoredFile("a.txt", b"abc")])
        archive = MPQArchive(path)
        archive.open()
        archive.close()
        archive.close()
        assert archive.closed

    def test_reopen_after_close(self, make_archive):
        path = make_archive([StoredFile("a.txt", b"abcdef")])
        archive = MPQArchive(path)
        header = archive.header
        archive.close()

        assert archive.extract("a.txt") == b"abcdef"
        assert not archive.closed
        assert archive.header is header
        archive.close()

    def test_tables_loaded_once(self, make_archive, monkeypatch):
        path = make_archive([StoredFile("a.txt", b"abc")])
        archive = MPQArchive(path)
        calls = []
        original = archive._load_tables

        def counting():
            calls.append(1)
            original()

        monkeypatch.setattr(archive, "_load_tables", counting)

        threads = [threading.Thread(target=lambda: archive.header) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        archive.exists("a.txt")
        archive.close()
        archive.exists("a.txt")
        archive.close()

        assert calls == [1]

    def test_independent_instances(self, make_archive):
        path = make_archive([StoredFile("a.txt", sample_text(3000))])
        with MPQArchive(path) as first, MPQArchive(path) as second:
            assert first.extract("a.txt") == second.extract("a.txt")


class TestListAndExtractTo:
    """Tests for list_files() and extract_to()."""

    def test_list_files(self, make_archive):
        listfile = b"Data\\a.txt\r\nData\\b.txt\r\n\r\n"
        files = [
            StoredFile("(listfile)", listfile),
            StoredFile("Data\\a.txt", b"aaa"),
            StoredFile("Data\\b.txt", b"bbb"),
        ]
        with MPQArchive(make_archive(files)) as archive:
            assert archive.list_files() == ["Data\\a.txt", "Data\\b.txt"]

    def test_list_files_without_listfile(self, make_archive):
        with MPQArchive(make_archive([StoredFile("a.txt", b"abc")])) as archive:
            assert archive.list_files() == []

    def test_extract_to(self, make_archive, tmp_path):
        files = [StoredFile("Data\\a.txt", b"aaa"), StoredFile("b.txt", sample_text(2000))]
        output = tmp_path / "out"
        with MPQArchive(make_archive(files)) as archive:
            results = list(archive.extract_to(["Data\\a.txt", "missing.txt", "b.txt"], output))

        assert [name for name, _ in results] == ["Data\\a.txt", "b.txt"]
        assert (output / "Data" / "a.txt").read_bytes() == b"aaa"
        assert (output / "b.txt").read_bytes() == sample_text(2000)

    def test_extract_to_stays_inside_output(self, make_archive, tmp_path):
        files = [StoredFile("..\\escape.txt", b"x")]
        output = tmp_path / "out"
        with MPQArchive(make_archive(files)) as archive:
            ((_, written),) = list(archive.extract_to(["..\\escape.txt"], output))
        assert written == output / "escape.txt"
