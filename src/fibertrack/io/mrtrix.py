"""
MRtrix streamline files (.tck)

A text header of "key: value" lines, starting with "mrtrix tracks" and
ending with "END", followed at the offset given by the "file" key by the
points of every streamline in world coordinates. A NaN triple separates
streamlines and an Inf triple ends the data. Only geometry is stored: no
point or streamline properties, no seed index and no image grid.
"""

from pathlib import Path
from typing import Dict, Optional, Union
import logging

import numpy as np

from ..core.space import ImageSpace, PointType
from ..tractography.streamline import Streamline
from .adapters import SinkFileAdapter, SourceFileAdapter
from .binary_stream import BinaryInputStream
from .errors import DataError, HeaderError, StreamlineFileError

logger = logging.getLogger(__name__)

MRTRIX_MAGIC = "mrtrix tracks"

DATATYPES = {
    'Float32LE': ('float32', 'little'),
    'Float32BE': ('float32', 'big'),
    'Float64LE': ('float64', 'little'),
    'Float64BE': ('float64', 'big'),
}

# Zero-padded so the final count can be written in place
COUNT_WIDTH = 10


def read_header(stream: BinaryInputStream) -> Dict[str, str]:
    """
    Parse an MRtrix tracks header

    Args:
        stream: Input stream positioned at the start of the file

    Returns:
        Header fields as strings
    """
    magic = stream.read_string('\n')
    if magic.strip() != MRTRIX_MAGIC:
        raise HeaderError(f"Bad magic line {magic!r}, expected {MRTRIX_MAGIC!r}")

    fields = {}
    while True:
        line = stream.read_string('\n').strip()
        if line == 'END':
            break
        if not line:
            raise HeaderError("Header ended without an END line")
        key, sep, value = line.partition(':')
        if not sep:
            raise HeaderError(f"Malformed header line: {line!r}")
        fields[key.strip()] = value.strip()

    for key in ('datatype', 'count', 'file'):
        if key not in fields:
            raise HeaderError(f"Header lacks the '{key}' field")
    if fields['datatype'] not in DATATYPES:
        raise HeaderError(f"Unsupported datatype: {fields['datatype']}")

    return fields


def _data_offset(fields: Dict[str, str]) -> int:
    name, _, offset = fields['file'].partition(' ')
    if name != '.' or not offset.strip().isdigit():
        raise HeaderError(f"Only single-file data is supported, got 'file: {fields['file']}'")
    return int(offset)


class MrtrixSourceAdapter(SourceFileAdapter):
    """
    Reads .tck files

    Points come back in world coordinates unless an image space is given,
    in which case any point type can be requested.
    """

    extension = "tck"

    def __init__(
        self,
        path: Union[str, Path],
        point_type: PointType = PointType.WORLD,
        space: Optional[ImageSpace] = None
    ):
        if space is None and point_type is not PointType.WORLD:
            raise StreamlineFileError(
                f"MRtrix files carry no image grid; an image space is needed for {point_type.value} points"
            )
        super().__init__(path, point_type, space)

    def _read_header(self):
        fields = read_header(self.stream)
        self.header = fields
        self.datatype, endianness = DATATYPES[fields['datatype']]
        self.stream.set_endianness(endianness)

        try:
            self.n_streamlines = int(fields['count'])
        except ValueError:
            raise HeaderError(f"Invalid streamline count: {fields['count']}")
        self.data_offset = _data_offset(fields)

    def _read_record(self) -> Streamline:
        points = []
        while True:
            point = self.stream.read_vector(self.datatype, 3, 'float64')
            if np.all(np.isnan(point)):
                break
            if np.any(np.isinf(point)):
                raise DataError(f"{self.path} ends after {self.current} of {self.n_streamlines} streamlines")
            points.append(point)

        points = np.array(points).reshape(-1, 3)
        if self.point_type is not PointType.WORLD:
            points = self.space.convert(points, PointType.WORLD, self.point_type).reshape(-1, 3)
        return Streamline(points, self.point_type, fixed_spacing=False)


class MrtrixSinkAdapter(SinkFileAdapter):
    """Writes .tck files, always as float32"""

    extension = "tck"

    def _header_text(self, count: int) -> str:
        datatype = 'Float32LE' if self.stream.endianness == 'little' else 'Float32BE'
        lines = [
            MRTRIX_MAGIC,
            f"datatype: {datatype}",
            f"count: {count:0{COUNT_WIDTH}d}",
        ]

        # The offset counts its own digits
        offset = 0
        while True:
            text = "\n".join(lines + [f"file: . {offset}", "END"]) + "\n"
            if len(text) == offset:
                return text
            offset = len(text)

    def _write_header(self):
        text = self._header_text(0)
        self._data_offset = len(text)
        self.stream.write_string(text)
        self.stream.write_values(np.inf, 'float32', 3)
        self.stream.seek(self._data_offset)

    def _prepare_append(self):
        reader = BinaryInputStream(self._file)
        fields = read_header(reader)
        datatype, endianness = DATATYPES[fields['datatype']]
        if datatype != 'float32':
            raise HeaderError(f"Cannot append to {self.path}: only float32 data can be written")

        reader.set_endianness(endianness)
        self.stream.set_endianness(endianness)
        self._data_offset = _data_offset(fields)
        self.count = int(fields['count'])

        if len(self._header_text(self.count)) != self._data_offset:
            raise HeaderError(f"Cannot append to {self.path}: its header layout differs")

        # Overwrite the end marker
        end = reader.seek(-12, 2)
        if not np.all(np.isinf(reader.read_vector('float32', 3))):
            raise DataError(f"{self.path} does not end with an end-of-data marker")
        reader.detach()
        self.stream.seek(end)

    def _write_record(self, streamline: Streamline):
        points = streamline.points_in(PointType.WORLD, self.space)
        self.stream.write_matrix(points, 'float32')
        self.stream.write_values(np.nan, 'float32', 3)

    def _finalise(self):
        self.stream.write_values(np.inf, 'float32', 3)
        self.stream.seek(0)
        self.stream.write_string(self._header_text(self.count))
