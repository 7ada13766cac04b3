import struct
import functools
from typing import List, Tuple, Union

# COLMAP binary data is little-endian throughout
ENDIAN = "<"

# Size of each buffer chunk allocated by BinaryWriter
CHUNK_SIZE = 65536

BufferLike = Union[bytes, bytearray, memoryview]


# Compiled structs, cached per format string
@functools.lru_cache(maxsize=128)
def _get_struct(format_str: str) -> struct.Struct:
    return struct.Struct(format_str)


class BinaryReader:
    """
    Sequential little-endian reader over an in-memory buffer.

    The cursor only moves forward through read/skip calls (or explicitly via
    seek). Any read that would run past the end of the buffer raises EOFError,
    leaving the cursor where it was.
    """

    __slots__ = ['_data', '_offset']

    def __init__(self, buffer: BufferLike):
        self._data = buffer if isinstance(buffer, bytes) else bytes(buffer)
        self._offset = 0

    @property
    def position(self) -> int:
        return self._offset

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    @property
    def length(self) -> int:
        return len(self._data)

    def has_more(self) -> bool:
        return self._offset < len(self._data)

    def _require(self, num_bytes: int) -> None:
        if num_bytes < 0 or self._offset + num_bytes > len(self._data):
            raise EOFError(
                f"Could not read {num_bytes} bytes at offset {self._offset} "
                f"({self.remaining} remaining). File truncated?"
            )

    def read_struct(self, format_char_sequence: str) -> tuple:
        """Read and unpack a fixed-size record with cached struct objects."""
        struct_obj = _get_struct(ENDIAN + format_char_sequence)
        self._require(struct_obj.size)
        values = struct_obj.unpack_from(self._data, self._offset)
        self._offset += struct_obj.size
        return values

    def read_uint8(self) -> int:
        return self.read_struct("B")[0]

    def read_uint32(self) -> int:
        return self.read_struct("I")[0]

    def read_int32(self) -> int:
        return self.read_struct("i")[0]

    def read_uint64(self) -> int:
        return self.read_struct("Q")[0]

    def read_int64(self) -> int:
        return self.read_struct("q")[0]

    def read_float64(self) -> float:
        return self.read_struct("d")[0]

    def read_float64_array(self, count: int) -> Tuple[float, ...]:
        return self.read_struct(f"{count}d") if count > 0 else ()

    def read_string(self) -> str:
        """Read a null-terminated string."""
        start = self._offset
        end = self._data.find(b"\x00", start)
        if end < 0:
            raise EOFError(f"Unterminated string starting at offset {start}. File truncated?")
        self._offset = end + 1
        return self._data[start:end].decode("utf-8")

    def read_bytes(self, num_bytes: int) -> bytes:
        self._require(num_bytes)
        chunk = self._data[self._offset:self._offset + num_bytes]
        self._offset += num_bytes
        return chunk

    def skip(self, num_bytes: int) -> None:
        self._require(num_bytes)
        self._offset += num_bytes

    def seek(self, position: int) -> None:
        if position < 0 or position > len(self._data):
            raise EOFError(f"Cannot seek to {position} in a buffer of {len(self._data)} bytes.")
        self._offset = position


class BinaryWriter:
    """
    Append-only little-endian writer.

    Data goes into fixed-size chunks so that large writes never reallocate the
    whole output; `to_bytes` joins the chunks once at the end.
    """

    __slots__ = ['_chunks', '_current', '_offset', '_chunk_size']

    def __init__(self, chunk_size: int = CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._chunk_size = chunk_size
        self._chunks: List[bytes] = []
        self._current = bytearray(chunk_size)
        self._offset = 0

    def _ensure_capacity(self, num_bytes: int) -> None:
        if self._offset + num_bytes > self._chunk_size:
            self._flush()
            if num_bytes > self._chunk_size:
                # Oversized payloads get a dedicated chunk
                self._current = bytearray(num_bytes)

    def _flush(self) -> None:
        if self._offset > 0:
            self._chunks.append(bytes(self._current[:self._offset]))
        self._current = bytearray(self._chunk_size)
        self._offset = 0

    def write_struct(self, format_char_sequence: str, *values) -> None:
        struct_obj = _get_struct(ENDIAN + format_char_sequence)
        self._ensure_capacity(struct_obj.size)
        struct_obj.pack_into(self._current, self._offset, *values)
        self._offset += struct_obj.size

    def write_uint8(self, value: int) -> None:
        self.write_struct("B", value)

    def write_uint32(self, value: int) -> None:
        self.write_struct("I", value)

    def write_int32(self, value: int) -> None:
        self.write_struct("i", value)

    def write_uint64(self, value: int) -> None:
        # Negative values are stored with their two's complement bit pattern
        self.write_struct("Q", int(value) & 0xFFFFFFFFFFFFFFFF)

    def write_int64(self, value: int) -> None:
        self.write_struct("q", value)

    def write_float64(self, value: float) -> None:
        self.write_struct("d", value)

    def write_float64_array(self, values) -> None:
        values = [float(v) for v in values]
        if values:
            self.write_struct(f"{len(values)}d", *values)

    def write_bytes(self, data: BufferLike) -> None:
        data = bytes(data)
        self._ensure_capacity(len(data))
        self._current[self._offset:self._offset + len(data)] = data
        self._offset += len(data)

    def write_string(self, value: str) -> None:
        """Write a null-terminated string."""
        self.write_bytes(value.encode("utf-8") + b"\x00")

    @property
    def bytes_written(self) -> int:
        return sum(len(chunk) for chunk in self._chunks) + self._offset

    def to_bytes(self) -> bytes:
        """Merge all chunks into a single contiguous buffer."""
        return b"".join(self._chunks) + bytes(self._current[:self._offset])
