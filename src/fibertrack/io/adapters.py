"""
Abstract streamline file adapters

A source adapter reads one streamline file record by record; a sink adapter
writes one. Both follow the same handle lifecycle:

    UNOPENED -> open() -> OPEN -> (read | seek | skip | write)* -> close() -> CLOSED

close() may be called any number of times. Any other operation on a handle
that is not open raises StreamlineFileError.
"""

from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union
import logging

from ..core.grid import Grid
from ..core.space import ImageSpace, PointType
from ..tractography.streamline import Streamline
from .binary_stream import BinaryInputStream, BinaryOutputStream
from .errors import StreamlineFileError

logger = logging.getLogger(__name__)


class AdapterState(Enum):
    """Lifecycle of a file handle"""
    UNOPENED = "unopened"
    OPEN = "open"
    CLOSED = "closed"


class _FileAdapter:
    """Lifecycle bookkeeping shared by source and sink adapters"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.state = AdapterState.UNOPENED
        self._file = None

    def _check_open(self):
        if self.state is not AdapterState.OPEN:
            raise StreamlineFileError(f"File {self.path} is {self.state.value}, not open")

    def _check_unopened(self):
        if self.state is not AdapterState.UNOPENED:
            raise StreamlineFileError(f"File {self.path} has already been opened")

    def _release(self):
        if self._file is not None:
            self._file.close()
            self._file = None
        self.stream.detach()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False


class SourceFileAdapter(_FileAdapter, ABC):
    """
    Reads streamlines from one file

    After open(): n_streamlines, property_names, point_property_names, grid
    and data_offset describe the file.
    """

    extension: str = ""

    def __init__(
        self,
        path: Union[str, Path],
        point_type: PointType = PointType.VOXEL,
        space: Optional[ImageSpace] = None
    ):
        """
        Args:
            path: File to read
            point_type: Coordinate convention of the streamlines returned
            space: Image space, for formats that carry no grid of their own
        """
        super().__init__(path)
        self.point_type = point_type
        self.space = space
        self.stream = BinaryInputStream()

        self.n_streamlines = 0
        self.property_names: List[str] = []
        self.point_property_names: List[str] = []
        self.grid: Optional[Grid] = Grid.from_space(space) if space is not None else None
        self.data_offset = 0
        self.current = 0

    def open(self):
        """Open the file and parse its header"""
        self._check_unopened()
        self._file = open(self.path, 'rb')
        self.stream.attach(self._file)
        try:
            self._read_header()
            self.stream.seek(self.data_offset)
        except Exception:
            self._release()
            self.state = AdapterState.CLOSED
            raise

        self.state = AdapterState.OPEN
        self.current = 0
        logger.debug(f"Opened {self.path}: {self.n_streamlines} streamlines")

    @abstractmethod
    def _read_header(self):
        """Parse the header, setting the descriptive attributes"""

    @abstractmethod
    def _read_record(self) -> Streamline:
        """Decode the record at the current stream position"""

    def more(self) -> bool:
        return self.state is AdapterState.OPEN and self.current < self.n_streamlines

    def read(self) -> Streamline:
        """Decode the next streamline"""
        self._check_open()
        if self.current >= self.n_streamlines:
            raise StreamlineFileError(f"All {self.n_streamlines} streamlines of {self.path} have been read")
        streamline = self._read_record()
        self.current += 1
        return streamline

    def seek(self, offset: int, index: Optional[int] = None):
        """
        Reposition to a byte offset

        Args:
            offset: Byte offset of a record
            index: Index of the streamline stored at that offset, if known
        """
        self._check_open()
        self.stream.seek(offset)
        if index is not None:
            self.current = index

    def rewind(self):
        """Go back to the first record"""
        self.seek(self.data_offset, 0)

    def skip(self, n: int):
        """Advance n records, decoding and discarding them"""
        for _ in range(n):
            self.read()

    def close(self):
        if self.state is AdapterState.CLOSED:
            return
        self._release()
        self.state = AdapterState.CLOSED


class SinkFileAdapter(_FileAdapter, ABC):
    """
    Writes streamlines to one file

    Streamlines may be in any coordinate convention; the image space maps
    them to the representation the format stores.
    """

    extension: str = ""

    def __init__(
        self,
        path: Union[str, Path],
        space: ImageSpace,
        endianness: Optional[str] = None
    ):
        """
        Args:
            path: File to write
            space: Image space of the streamlines
            endianness: Byte order of new files (None = native)
        """
        super().__init__(path)
        self.space = space
        self.grid = Grid.from_space(space)
        self.stream = BinaryOutputStream()
        self.stream.set_endianness(endianness or 'native')
        self.count = 0

    def open(self, append: bool = False):
        """
        Open for writing

        Args:
            append: Continue an existing file instead of replacing it
        """
        self._check_unopened()
        appending = append and self.path.exists()

        self._file = open(self.path, 'r+b' if appending else 'w+b')
        self.stream.attach(self._file)
        try:
            if appending:
                self._prepare_append()
            else:
                self._write_header()
        except Exception:
            self._release()
            self.state = AdapterState.CLOSED
            raise

        self.state = AdapterState.OPEN
        logger.debug(f"Opened {self.path} for {'appending' if appending else 'writing'}")

    @abstractmethod
    def _write_header(self):
        """Write the header (a placeholder until close) at the start of the file"""

    @abstractmethod
    def _prepare_append(self):
        """Validate an existing header and position the stream for appending"""

    @abstractmethod
    def _write_record(self, streamline: Streamline):
        """Encode one streamline at the current position"""

    @abstractmethod
    def _finalise(self):
        """Complete the file, recording the final streamline count"""

    def write(self, streamline: Streamline):
        self._check_open()
        self._write_record(streamline)
        self.count += 1

    def flush(self):
        self._check_open()
        self._file.flush()

    def close(self):
        if self.state is AdapterState.CLOSED:
            return
        try:
            if self.state is AdapterState.OPEN:
                self._finalise()
        finally:
            self._release()
            self.state = AdapterState.CLOSED
        logger.info(f"Wrote {self.count} streamlines to {self.path}")
