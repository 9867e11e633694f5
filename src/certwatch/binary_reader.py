"""Sequential reader for TLS-style binary structures."""

from enum import Enum


class Endianness(Enum):
    BIG = "big"
    LITTLE = "little"


class DataType(Enum):
    UINT = "uint"
    BYTES = "bytes"


class BinaryReader:
    """Reads unsigned integers and byte strings from a buffer, front to back."""

    def __init__(self, data: bytes, endianness: Endianness = Endianness.BIG):
        self._data = data
        self._pos = 0
        self._byteorder = endianness.value

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def has_bytes(self, count: int) -> bool:
        return self.remaining >= count

    def read(self, data_type: DataType, length: int):
        """
        Read `length` bytes and interpret them as `data_type`.

        Raises:
            ValueError: if fewer than `length` bytes remain
        """
        if length < 0:
            raise ValueError(f"Negative read length: {length}")
        if not self.has_bytes(length):
            raise ValueError(
                f"Truncated data: wanted {length} bytes at offset {self._pos}, "
                f"{self.remaining} left"
            )

        chunk = self._data[self._pos:self._pos + length]
        self._pos += length

        if data_type == DataType.UINT:
            return int.from_bytes(chunk, self._byteorder)
        return bytes(chunk)

    def read_vector(self, length_bytes: int) -> bytes:
        """Read a length-prefixed opaque vector (`opaque x<0..2^(8*n)-1>`)."""
        size = self.read(DataType.UINT, length_bytes)
        return self.read(DataType.BYTES, size)

    def skip(self, length: int) -> None:
        if not self.has_bytes(length):
            raise ValueError(f"Cannot skip {length} bytes, {self.remaining} left")
        self._pos += length
