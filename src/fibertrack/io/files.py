"""
Streamline file facade

Picks the file format for a path stem, and connects streamline files and
their label sidecars to the tracking pipeline:
- StreamlineFileSource: a seekable DataSource reading STEM.trk or STEM.tck
- StreamlineFileSink: a DataSink writing STEM.trk (or STEM.tck)

Labels in STEM.trkl belong to streamlines purely by position: entry i goes
with the i-th streamline of the geometry file.
"""

from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple, Union
import logging

from ..core.grid import Grid
from ..core.space import ImageSpace, PointType
from ..tractography.data_source import DataSink, DataSource
from ..tractography.streamline import Streamline
from .adapters import SinkFileAdapter, SourceFileAdapter
from .errors import StreamlineFileError
from .labels import StreamlineLabelList
from .mrtrix import MrtrixSinkAdapter, MrtrixSourceAdapter
from .trackvis import TrackvisSinkAdapter, TrackvisSourceAdapter

logger = logging.getLogger(__name__)

LABEL_EXTENSION = "trkl"


class StreamlineFormat(Enum):
    """Supported streamline file formats, valued by file extension"""
    TRACKVIS = "trk"
    MRTRIX = "tck"


SOURCE_ADAPTERS = {
    StreamlineFormat.TRACKVIS: TrackvisSourceAdapter,
    StreamlineFormat.MRTRIX: MrtrixSourceAdapter,
}

SINK_ADAPTERS = {
    StreamlineFormat.TRACKVIS: TrackvisSinkAdapter,
    StreamlineFormat.MRTRIX: MrtrixSinkAdapter,
}

# Formats tried, in order, when reading from a stem
SEARCH_ORDER = (StreamlineFormat.TRACKVIS, StreamlineFormat.MRTRIX)


def file_stem(path: Union[str, Path]) -> str:
    """Strip a known streamline or label extension from a path"""
    path = str(path)
    for extension in [fmt.value for fmt in StreamlineFormat] + [LABEL_EXTENSION]:
        if path.endswith('.' + extension):
            return path[:-(len(extension) + 1)]
    return path


def label_path(stem: Union[str, Path]) -> Path:
    return Path(f"{file_stem(stem)}.{LABEL_EXTENSION}")


def resolve_source_path(stem: Union[str, Path]) -> Tuple[Path, StreamlineFormat]:
    """
    Find the streamline file for a stem

    Args:
        stem: Path with or without extension

    Returns:
        path: Existing file
        format: Its format
    """
    stem = file_stem(stem)
    for fmt in SEARCH_ORDER:
        path = Path(f"{stem}.{fmt.value}")
        if path.is_file():
            return path, fmt
    raise StreamlineFileError(f"No streamline source file found for stem {stem}")


def open_source_adapter(
    stem: Union[str, Path],
    point_type: PointType = PointType.VOXEL,
    space: Optional[ImageSpace] = None
) -> SourceFileAdapter:
    """
    Create and open the right source adapter for a stem

    MRtrix files store world coordinates and no image grid, so without a
    space their streamlines are returned as world points whatever point
    type was asked for.
    """
    path, fmt = resolve_source_path(stem)
    if fmt is StreamlineFormat.MRTRIX and space is None and point_type is not PointType.WORLD:
        logger.warning(f"{path} has no image grid; reading world points instead of {point_type.value} points")
        point_type = PointType.WORLD
    adapter = SOURCE_ADAPTERS[fmt](path, point_type=point_type, space=space)
    adapter.open()
    return adapter


class StreamlineFileSource(DataSource):
    """
    Reads streamlines, with their labels, from a file

    A label list passed in is only borrowed and left untouched; one read from
    the sidecar file belongs to the source and is released by done().
    """

    def __init__(
        self,
        stem: Union[str, Path],
        read_labels: bool = True,
        point_type: PointType = PointType.VOXEL,
        label_list: Optional[StreamlineLabelList] = None,
        space: Optional[ImageSpace] = None
    ):
        """
        Initialize source

        Args:
            stem: File stem (an extension is tolerated)
            read_labels: Attach labels from the STEM.trkl sidecar if present
            point_type: Coordinate convention of the streamlines returned
            label_list: Labels to attach instead of the sidecar file
            space: Image space for non-world points from .tck files; without
                one .tck streamlines come back as world points
        """
        self.stem = file_stem(stem)
        self.adapter = open_source_adapter(self.stem, point_type, space)
        self.owns_labels = False
        self.labels = None

        try:
            if label_list is not None:
                self.labels = label_list
            elif read_labels and label_path(self.stem).is_file():
                self.labels = StreamlineLabelList.read(label_path(self.stem))
                self.owns_labels = True

            if self.labels is not None:
                self.labels.check_count(self.adapter.n_streamlines)
        except Exception:
            self.adapter.close()
            raise

        logger.info(
            f"Reading {self.adapter.n_streamlines} streamlines from {self.adapter.path}"
            f"{' with labels' if self.labels is not None else ''}"
        )

    @property
    def n_streamlines(self) -> int:
        return self.adapter.n_streamlines

    @property
    def grid(self) -> Optional[Grid]:
        return self.adapter.grid

    @property
    def property_names(self):
        return self.adapter.property_names

    def more(self) -> bool:
        return self.adapter.more()

    def get(self) -> Streamline:
        index = self.adapter.current
        streamline = self.adapter.read()
        if self.labels is not None:
            streamline.add_labels(self.labels[index])
        return streamline

    def seekable(self) -> bool:
        return True

    def seek(self, n: int):
        """Position before the n-th streamline (0-based)"""
        if not 0 <= n <= self.adapter.n_streamlines:
            raise IndexError(f"Cannot seek to streamline {n} of {self.adapter.n_streamlines}")
        self.adapter.rewind()
        self.adapter.skip(n)

    def done(self):
        self.adapter.close()
        if self.owns_labels:
            self.labels = None
            self.owns_labels = False

    def abort(self):
        self.done()


class StreamlineFileSink(DataSink):
    """
    Writes streamlines to a file, with an optional label sidecar

    The file header and the label list are completed in done(). abort()
    closes the file with the streamlines written so far and writes no labels.
    Used as a context manager, the sink calls done() on a clean exit and
    abort() when an exception escapes.
    """

    def __init__(
        self,
        stem: Union[str, Path],
        space: ImageSpace,
        write_labels: bool = True,
        append: bool = False,
        label_dictionary: Optional[Dict[int, str]] = None,
        format: StreamlineFormat = StreamlineFormat.TRACKVIS,
        endianness: Optional[str] = None
    ):
        """
        Initialize sink

        Args:
            stem: File stem (an extension is tolerated)
            space: Image space of the streamlines
            write_labels: Also write STEM.trkl
            append: Add to existing files instead of replacing them
            label_dictionary: Names of the region labels
            format: Geometry file format
            endianness: Byte order of new files (None = native)
        """
        self.stem = file_stem(stem)
        self.format = format
        self.adapter: SinkFileAdapter = SINK_ADAPTERS[format](
            f"{self.stem}.{format.value}", space, endianness
        )
        self.adapter.open(append)

        self.labels = None
        if write_labels:
            try:
                self.labels = self._initial_labels(append, label_dictionary)
            except Exception:
                self.adapter.close()
                raise

        logger.info(f"Writing streamlines to {self.adapter.path}{' (appending)' if append else ''}")

    def _initial_labels(self, append: bool, dictionary: Optional[Dict[int, str]]) -> StreamlineLabelList:
        path = label_path(self.stem)
        if append and self.adapter.count > 0:
            if not path.is_file():
                raise StreamlineFileError(f"Cannot append labels: {path} does not exist")
            labels = StreamlineLabelList.read(path)
            labels.check_count(self.adapter.count)
            labels.dictionary.update(dictionary or {})
            return labels
        return StreamlineLabelList(dictionary=dictionary)

    @property
    def count(self) -> int:
        return self.adapter.count

    def setup(self, count: int, items: Sequence[Streamline]):
        logger.debug(f"Writing a block of {count} streamlines")

    def put(self, data: Streamline):
        self.adapter.write(data)
        if self.labels is not None:
            self.labels.append(data.labels)

    def finish(self):
        self.adapter.flush()

    def done(self):
        self.adapter.close()
        if self.labels is not None:
            self.labels.write(label_path(self.stem), self.adapter.stream.endianness)

    def abort(self):
        self.adapter.close()
        self.labels = None
        logger.warning(f"Aborted writing {self.adapter.path}; no labels written")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if exc_type is None:
            self.done()
        else:
            self.abort()
        return False
