"""
Endian-aware binary reading and writing

Thin codecs over a file-like object. Element types are numpy type names
("int16", "float32", ...). The byte order used on the stream is chosen
independently of the host; whenever it differs from the native order every
multi-byte value is byte-swapped on the way in or out.
"""

import sys
from typing import Optional, Sequence, Union
import logging

import numpy as np

logger = logging.getLogger(__name__)

_ORDER_CODES = {'little': '<', 'big': '>'}


class BinaryStreamError(IOError):
    """Exception raised for binary stream failures (detached, short read, bad seek)"""
    pass


def native_endianness() -> str:
    """Byte order of the running platform, 'little' or 'big'"""
    return sys.byteorder


class BinaryStream:
    """Common state for binary codecs: the attached stream and its byte order"""

    def __init__(self, stream=None):
        self.stream = stream
        self.endianness = native_endianness()

    @property
    def swap_endian(self) -> bool:
        """Whether values are byte-swapped relative to the host"""
        return self.endianness != native_endianness()

    def native_endianness(self) -> str:
        return native_endianness()

    def set_endianness(self, endianness: str):
        """
        Select the byte order used on the stream

        Args:
            endianness: 'little', 'big', 'native' or 'swapped'
        """
        if endianness == 'native':
            endianness = native_endianness()
        elif endianness == 'swapped':
            endianness = 'big' if native_endianness() == 'little' else 'little'

        if endianness not in _ORDER_CODES:
            raise ValueError(f"Unknown endianness: {endianness}")
        self.endianness = endianness

    def attach(self, stream):
        self.stream = stream

    def detach(self):
        self.stream = None

    @property
    def attached(self) -> bool:
        return self.stream is not None

    def _check_attached(self):
        if self.stream is None:
            raise BinaryStreamError("No stream is attached")

    def _dtype(self, type_name) -> np.dtype:
        dtype = np.dtype(type_name)
        if dtype.itemsize > 1 and dtype.kind not in 'SUV':
            dtype = dtype.newbyteorder(_ORDER_CODES[self.endianness])
        return dtype

    def tell(self) -> int:
        self._check_attached()
        return self.stream.tell()

    def seek(self, offset: int, whence: int = 0) -> int:
        """
        Reposition the stream, raising BinaryStreamError on failure

        Positions before the start or past the current end of the stream
        are rejected and leave the position unchanged.
        """
        self._check_attached()
        if whence not in (0, 1, 2):
            raise BinaryStreamError(f"Invalid whence {whence}")
        try:
            current = self.stream.tell()
            end = self.stream.seek(0, 2)
            self.stream.seek(current)
        except (OSError, ValueError) as e:
            raise BinaryStreamError(f"Failed to seek to offset {offset}: {e}")

        target = (offset, current + offset, end + offset)[whence]
        if target < 0 or target > end:
            raise BinaryStreamError(f"Cannot seek to offset {target}: stream holds {end} bytes")
        return self.stream.seek(target)


class BinaryInputStream(BinaryStream):
    """Reads values, vectors and strings from a binary stream"""

    def _read_bytes(self, n_bytes: int) -> bytes:
        self._check_attached()
        data = self.stream.read(n_bytes)
        if len(data) != n_bytes:
            raise BinaryStreamError(
                f"Unexpected end of stream: wanted {n_bytes} bytes, got {len(data)}"
            )
        return data

    def _read_array(self, source_type, count: int) -> np.ndarray:
        dtype = self._dtype(source_type)
        if count == 0:
            return np.empty(0, dtype=dtype.newbyteorder('='))
        data = self._read_bytes(dtype.itemsize * count)
        values = np.frombuffer(data, dtype=dtype, count=count)
        # Values come back in native order
        return values.astype(values.dtype.newbyteorder('='))

    def read_value(self, source_type):
        """Read one value of the given on-disk type"""
        return self._read_array(source_type, 1)[0].item()

    def read_vector(
        self,
        source_type,
        n: int,
        final_type=None
    ) -> np.ndarray:
        """
        Read n values

        Args:
            source_type: On-disk element type
            n: Number of elements
            final_type: In-memory element type (defaults to the source type)

        Returns:
            Array (n,)
        """
        values = self._read_array(source_type, n)
        if final_type is not None:
            values = values.astype(final_type)
        return values

    def read_matrix(
        self,
        source_type,
        rows: int,
        cols: int,
        final_type=None
    ) -> np.ndarray:
        """Read a row-major matrix"""
        return self.read_vector(source_type, rows * cols, final_type).reshape(rows, cols)

    def read_string(self, delim: Optional[str] = '\0', n: Optional[int] = None) -> str:
        """
        Read a string

        With n given, reads exactly n bytes and strips null padding. Otherwise
        reads up to (and consumes) the delimiter, or to the end of the stream
        if the delimiter never appears.
        """
        if n is not None:
            raw = self._read_bytes(n)
            return raw.split(b'\0', 1)[0].decode('latin1')

        self._check_attached()
        terminator = delim.encode('latin1')
        chars = []
        while True:
            char = self.stream.read(1)
            if not char or char == terminator:
                break
            chars.append(char)
        return b''.join(chars).decode('latin1')


class BinaryOutputStream(BinaryStream):
    """Writes values, vectors and strings to a binary stream"""

    def _write_bytes(self, data: bytes):
        self._check_attached()
        try:
            written = self.stream.write(data)
        except (OSError, ValueError) as e:
            raise BinaryStreamError(f"Write failed: {e}")
        if written is not None and written != len(data):
            raise BinaryStreamError(f"Short write: {written} of {len(data)} bytes")

    def write_value(self, value, target_type):
        """Write one value as the given on-disk type"""
        self._write_bytes(np.asarray([value]).astype(self._dtype(target_type)).tobytes())

    def write_values(self, value, target_type, n: int):
        """Write the same value n times"""
        self._write_bytes(np.full(n, value).astype(self._dtype(target_type)).tobytes())

    def write_vector(self, values: Union[Sequence, np.ndarray], target_type):
        """Write a sequence of values, converted to the on-disk type"""
        array = np.asarray(values).ravel()
        self._write_bytes(array.astype(self._dtype(target_type)).tobytes())

    def write_matrix(self, values: np.ndarray, target_type):
        """Write a matrix in row-major order"""
        self.write_vector(np.asarray(values), target_type)

    def write_string(self, value: str, n: Optional[int] = None):
        """
        Write a string

        With n given, the string is truncated or null-padded to exactly n
        bytes. Otherwise it is written as-is with no terminator.
        """
        raw = value.encode('latin1')
        if n is not None:
            raw = raw[:n].ljust(n, b'\0')
        self._write_bytes(raw)
