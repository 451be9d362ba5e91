"""PKWare Data Compression Library "explode" decoder.

The implode format is an LZ77 variant: each token is either a literal byte
(optionally Huffman coded) or a length/distance pair, both coded with fixed
canonical Huffman tables. Bits are read least-significant first and the
Huffman codes are stored bit-inverted.
"""

from typing import List, Sequence, Tuple

from ..errors import ExplodeError

MAX_BITS = 13

# Code lengths, run-length packed: low nibble is the length, high nibble + 1
# is the repeat count.
LITERAL_LENGTHS = bytes([
    11, 124, 8, 7, 28, 7, 188, 13, 76, 4, 10, 8, 12, 10, 12, 10, 8, 23, 8,
    9, 7, 6, 7, 8, 7, 6, 55, 8, 23, 24, 12, 11, 7, 9, 11, 12, 6, 7, 22, 5,
    7, 24, 6, 11, 9, 6, 7, 22, 7, 11, 38, 7, 9, 8, 25, 11, 8, 11, 9, 12,
    8, 12, 5, 38, 5, 38, 5, 11, 7, 5, 6, 21, 6, 10, 53, 8, 7, 24, 10, 27,
    44, 253, 253, 253, 252, 252, 252, 13, 12, 45, 12, 45, 12, 61, 12, 45,
    44, 173,
])
LENGTH_LENGTHS = bytes([2, 35, 36, 53, 38, 23])
DISTANCE_LENGTHS = bytes([2, 20, 53, 230, 247, 151, 248])

LENGTH_BASE = (3, 2, 4, 5, 6, 7, 8, 9, 10, 12, 16, 24, 40, 72, 136, 264)
LENGTH_EXTRA = (0, 0, 0, 0, 0, 0, 0, 0, 1, 2, 3, 4, 5, 6, 7, 8)

END_OF_STREAM = 519


class HuffmanTable:
    """Canonical Huffman decoding table: code counts per length plus symbols."""

    def __init__(self, packed: Sequence[int]):
        lengths: List[int] = []
        for byte in packed:
            lengths.extend([byte & 15] * ((byte >> 4) + 1))

        self.count = [0] * (MAX_BITS + 1)
        for length in lengths:
            self.count[length] += 1

        offsets = [0] * (MAX_BITS + 1)
        for length in range(1, MAX_BITS):
            offsets[length + 1] = offsets[length] + self.count[length]

        self.symbol = [0] * len(lengths)
        for symbol, length in enumerate(lengths):
            if length:
                self.symbol[offsets[length]] = symbol
                offsets[length] += 1


LITERAL_TABLE = HuffmanTable(LITERAL_LENGTHS)
LENGTH_TABLE = HuffmanTable(LENGTH_LENGTHS)
DISTANCE_TABLE = HuffmanTable(DISTANCE_LENGTHS)


class _BitReader:
    def __init__(self, data: bytes, pos: int = 0):
        self.data = data
        self.pos = pos
        self.buffer = 0
        self.count = 0

    def bits(self, need: int) -> int:
        while self.count < need:
            if self.pos >= len(self.data):
                raise EOFError("Implode stream ended unexpectedly")
            self.buffer |= self.data[self.pos] << self.count
            self.pos += 1
            self.count += 8
        value = self.buffer & ((1 << need) - 1)
        self.buffer >>= need
        self.count -= need
        return value

    def decode(self, table: HuffmanTable) -> int:
        code = first = index = 0
        for length in range(1, MAX_BITS + 1):
            code |= self.bits(1) ^ 1
            count = table.count[length]
            if code - first < count:
                return table.symbol[index + code - first]
            index += count
            first = (first + count) << 1
            code <<= 1
        raise ValueError("Invalid Huffman code in implode stream")


def read_header(data: bytes) -> Tuple[int, int]:
    """Return (literal coding, dictionary bits) from an implode stream."""
    if len(data) < 2:
        raise ExplodeError(f"Implode stream too short: {len(data)} bytes")
    coded, dict_bits = data[0], data[1]
    if coded > 1:
        raise ExplodeError(f"Invalid literal encoding value: {coded}")
    if not 4 <= dict_bits <= 6:
        raise ExplodeError(f"Invalid dictionary size: {dict_bits}")
    return coded, dict_bits


def explode(data: bytes) -> bytes:
    """Decompress a PKWare implode stream.

    Raises:
        ExplodeError: if the stream is malformed. The bytes decoded so far are
            attached as ``partial``.
    """
    data = bytes(data)
    coded, dict_bits = read_header(data)
    reader = _BitReader(data, 2)
    output = bytearray()

    try:
        while True:
            if reader.bits(1):
                symbol = reader.decode(LENGTH_TABLE)
                length = LENGTH_BASE[symbol] + reader.bits(LENGTH_EXTRA[symbol])
                if length == END_OF_STREAM:
                    break

                extra = 2 if length == 2 else dict_bits
                distance = (reader.decode(DISTANCE_TABLE) << extra) + reader.bits(extra) + 1
                if distance > len(output):
                    raise ValueError(f"Distance {distance} exceeds output length {len(output)}")

                start = len(output) - distance
                if distance >= length:
                    output += output[start : start + length]
                else:
                    # Overlapping copy repeats the window
                    chunk = bytes(output[start:])
                    repeats, rest = divmod(length, distance)
                    output += chunk * repeats + chunk[:rest]
            else:
                output.append(reader.decode(LITERAL_TABLE) if coded else reader.bits(8))
    except (EOFError, ValueError) as e:
        raise ExplodeError(str(e), bytes(output)) from e

    return bytes(output)
