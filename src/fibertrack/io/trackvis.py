"""
TrackVis streamline files (.trk)

Layout (https://trackvis.org/docs/?subsect=fileformat):
- 1000-byte header: "TRACK" magic, image dimensions and voxel size, up to
  10 per-point scalar names and 10 per-streamline property names (20 bytes
  each), voxel-to-RAS matrix, voxel order, streamline count, version 2 and
  the header size (1000), which also reveals the byte order
- One record per streamline: int32 point count, then for each point x, y, z
  and the scalars as float32, then the properties as float32

Coordinates are stored in corner-origin scaled-voxel space: the centre of
voxel (i, j, k) is at ((i + 0.5) * dx, (j + 0.5) * dy, (k + 0.5) * dz).
The seed index of each streamline travels as the "seed" property.
"""

from pathlib import Path
from typing import Dict, List, Optional, Union
import logging

import numpy as np

from ..core.grid import Grid
from ..core.space import ImageSpace, PointType
from ..tractography.streamline import Streamline
from .adapters import SinkFileAdapter, SourceFileAdapter
from .binary_stream import BinaryInputStream, BinaryOutputStream
from .errors import DataError, HeaderError

logger = logging.getLogger(__name__)

TRACKVIS_MAGIC = "TRACK"
TRACKVIS_VERSION = 2
HEADER_SIZE = 1000
MAX_NAMES = 10
NAME_LENGTH = 20
SEED_PROPERTY = "seed"

# Byte offsets of the fields read back individually
_COUNT_OFFSET = 988
_HEADER_SIZE_OFFSET = 996


def _detect_endianness(stream: BinaryInputStream) -> str:
    """Byte order of a TrackVis file, from its header size field"""
    for endianness in ('little', 'big'):
        stream.set_endianness(endianness)
        stream.seek(_HEADER_SIZE_OFFSET)
        if stream.read_value('int32') == HEADER_SIZE:
            return endianness
    raise HeaderError("Header size field is not 1000 in either byte order")


def read_header(stream: BinaryInputStream) -> Dict:
    """
    Parse a TrackVis header, detecting its byte order

    Args:
        stream: Input stream attached to the file

    Returns:
        Dictionary of header fields, including 'endianness'
    """
    endianness = _detect_endianness(stream)
    stream.seek(0)

    header = {'endianness': endianness}
    magic = stream.read_string(n=6)
    if not magic.startswith(TRACKVIS_MAGIC):
        raise HeaderError(f"Bad magic string {magic!r}, expected {TRACKVIS_MAGIC!r}")

    header['dim'] = stream.read_vector('int16', 3, 'int64')
    header['voxel_size'] = stream.read_vector('float32', 3, 'float64')
    header['origin'] = stream.read_vector('float32', 3, 'float64')

    n_scalars = stream.read_value('int16')
    scalar_names = [stream.read_string(n=NAME_LENGTH) for _ in range(MAX_NAMES)]
    n_properties = stream.read_value('int16')
    property_names = [stream.read_string(n=NAME_LENGTH) for _ in range(MAX_NAMES)]
    if not (0 <= n_scalars <= MAX_NAMES and 0 <= n_properties <= MAX_NAMES):
        raise HeaderError(f"Unsupported number of scalars ({n_scalars}) or properties ({n_properties})")
    header['scalar_names'] = scalar_names[:n_scalars]
    header['property_names'] = property_names[:n_properties]

    header['vox_to_ras'] = stream.read_matrix('float32', 4, 4, 'float64')
    stream.read_string(n=444)
    header['voxel_order'] = stream.read_string(n=4)
    stream.read_string(n=4)
    header['image_orientation_patient'] = stream.read_vector('float32', 6, 'float64')
    stream.read_string(n=8)
    header['n_count'] = stream.read_value('int32')
    header['version'] = stream.read_value('int32')
    header['hdr_size'] = stream.read_value('int32')

    if header['version'] not in (1, TRACKVIS_VERSION):
        raise HeaderError(f"Unsupported TrackVis version: {header['version']}")
    if np.any(header['dim'] <= 0) or np.any(header['voxel_size'] <= 0):
        raise HeaderError(f"Invalid image grid: dim {header['dim']}, voxel size {header['voxel_size']}")

    return header


def header_grid(header: Dict) -> Grid:
    """Image grid described by a TrackVis header"""
    transform = header['vox_to_ras']
    # A zero in the last element means no matrix was recorded
    if transform[3, 3] == 0:
        transform = np.diag(list(header['voxel_size']) + [1.0])
    return Grid(header['dim'].tolist(), header['voxel_size'].tolist(), transform, header['voxel_order'] or None)


def write_header(
    stream: BinaryOutputStream,
    grid: Grid,
    scalar_names: List[str],
    property_names: List[str],
    n_count: int
):
    """Write a complete 1000-byte header at the current position"""
    for names in (scalar_names, property_names):
        if len(names) > MAX_NAMES:
            raise HeaderError(f"At most {MAX_NAMES} names can be stored, got {len(names)}")
        for name in names:
            if len(name.encode('latin1')) > NAME_LENGTH:
                raise HeaderError(f"Name '{name}' is longer than {NAME_LENGTH} bytes")

    stream.write_string(TRACKVIS_MAGIC, 6)
    stream.write_vector(grid.dim, 'int16')
    stream.write_vector(grid.pixdim, 'float32')
    stream.write_values(0.0, 'float32', 3)

    stream.write_value(len(scalar_names), 'int16')
    for i in range(MAX_NAMES):
        stream.write_string(scalar_names[i] if i < len(scalar_names) else '', NAME_LENGTH)
    stream.write_value(len(property_names), 'int16')
    for i in range(MAX_NAMES):
        stream.write_string(property_names[i] if i < len(property_names) else '', NAME_LENGTH)

    stream.write_matrix(grid.transform, 'float32')
    stream.write_string('', 444)
    stream.write_string(grid.orientation, 4)
    stream.write_string('', 4)
    stream.write_values(0.0, 'float32', 6)
    stream.write_string('', 8)
    stream.write_value(n_count, 'int32')
    stream.write_value(TRACKVIS_VERSION, 'int32')
    stream.write_value(HEADER_SIZE, 'int32')


class TrackvisSourceAdapter(SourceFileAdapter):
    """Reads .trk files"""

    extension = "trk"

    def _read_header(self):
        header = read_header(self.stream)
        self.header = header
        self.stream.set_endianness(header['endianness'])

        self.grid = header_grid(header)
        self._space = self.grid.to_space()
        self.n_streamlines = int(header['n_count'])
        self.point_property_names = list(header['scalar_names'])
        self.property_names = list(header['property_names'])
        self.data_offset = HEADER_SIZE

        if self.n_streamlines == 0:
            logger.warning(f"{self.path} does not record its streamline count")

    def _record_size(self, n_points: int) -> int:
        n_scalars = len(self.point_property_names)
        return 4 * (n_points * (3 + n_scalars) + len(self.property_names))

    def _read_record(self) -> Streamline:
        n_points = self.stream.read_value('int32')
        if n_points < 0:
            raise DataError(f"Negative point count {n_points} in {self.path}")

        n_scalars = len(self.point_property_names)
        data = self.stream.read_matrix('float32', n_points, 3 + n_scalars, 'float64')
        values = self.stream.read_vector('float32', len(self.property_names), 'float64')

        # Corner-origin scaled voxels to voxel centres
        voxels = data[:, :3] / self.grid.pixdim - 0.5
        points = voxels if self.point_type is PointType.VOXEL else \
            self._space.convert(voxels, PointType.VOXEL, self.point_type)

        properties = dict(zip(self.property_names, values.tolist()))
        seed = int(properties.pop(SEED_PROPERTY, 0))
        if n_points > 0 and not 0 <= seed < n_points:
            raise DataError(f"Seed index {seed} is outside a streamline of {n_points} points")

        point_properties = {
            name: data[:, 3 + i] for i, name in enumerate(self.point_property_names)
        }
        return Streamline(
            points,
            self.point_type,
            seed,
            point_properties=point_properties,
            properties=properties
        )

    def skip(self, n: int):
        """Advance n records using the record sizes derived from the header"""
        self._check_open()
        if self.current + n > self.n_streamlines:
            raise DataError(f"Cannot skip {n} streamlines from {self.current} of {self.n_streamlines}")
        for _ in range(n):
            n_points = self.stream.read_value('int32')
            self.stream.seek(self._record_size(n_points), 1)
            self.current += 1


class TrackvisSinkAdapter(SinkFileAdapter):
    """
    Writes .trk files

    The names of per-point and per-streamline properties are fixed by the
    first streamline written (or by the header of a file being appended to);
    every later streamline must carry the same names.
    """

    extension = "trk"

    def __init__(
        self,
        path: Union[str, Path],
        space: ImageSpace,
        endianness: Optional[str] = None
    ):
        super().__init__(path, space, endianness)
        self.scalar_names: Optional[List[str]] = None
        self.property_names: Optional[List[str]] = None

    def _write_header(self):
        write_header(self.stream, self.grid, [], [], 0)

    def _prepare_append(self):
        reader = BinaryInputStream(self._file)
        header = read_header(reader)
        reader.detach()

        if header_grid(header) != self.grid:
            raise HeaderError(f"Image grid of {self.path} does not match the tracking space")

        self.stream.set_endianness(header['endianness'])
        self.count = int(header['n_count'])
        if self.count > 0:
            self.scalar_names = list(header['scalar_names'])
            self.property_names = list(header['property_names'])
        self.stream.seek(0, 2)

    def _names_for(self, streamline: Streamline):
        return (
            streamline.point_property_names,
            [SEED_PROPERTY] + [name for name in streamline.property_names if name != SEED_PROPERTY]
        )

    def _write_record(self, streamline: Streamline):
        scalar_names, property_names = self._names_for(streamline)
        if self.scalar_names is None:
            self.scalar_names, self.property_names = scalar_names, property_names
        elif set(scalar_names) != set(self.scalar_names) or set(property_names) != set(self.property_names):
            raise DataError(
                f"Streamline properties {scalar_names + property_names} differ from "
                f"those of the file {self.scalar_names + self.property_names}"
            )

        voxels = streamline.points_in(PointType.VOXEL, self.space)
        data = np.empty((len(voxels), 3 + len(self.scalar_names)))
        data[:, :3] = (voxels + 0.5) * self.grid.pixdim
        for i, name in enumerate(self.scalar_names):
            data[:, 3 + i] = streamline.point_properties[name]

        values = [
            float(streamline.seed) if name == SEED_PROPERTY else streamline.properties[name]
            for name in self.property_names
        ]

        self.stream.write_value(len(voxels), 'int32')
        self.stream.write_matrix(data, 'float32')
        self.stream.write_vector(values, 'float32')

    def _finalise(self):
        self.stream.seek(0)
        write_header(
            self.stream,
            self.grid,
            self.scalar_names or [],
            self.property_names or [],
            self.count
        )
