"""
Streamline File Module

Main components:
- BinaryInputStream / BinaryOutputStream: endian-aware binary codecs
- TrackvisSourceAdapter / TrackvisSinkAdapter: .trk files
- MrtrixSourceAdapter / MrtrixSinkAdapter: .tck files
- StreamlineLabelList: .trkl label sidecar
- StreamlineFileSource / StreamlineFileSink: pipeline stages over a file stem
"""

from .errors import StreamlineFileError, HeaderError, DataError
from .binary_stream import (
    BinaryStreamError,
    BinaryInputStream,
    BinaryOutputStream,
    native_endianness,
)
from .labels import StreamlineLabelList
from .adapters import AdapterState, SourceFileAdapter, SinkFileAdapter
from .trackvis import TrackvisSourceAdapter, TrackvisSinkAdapter
from .mrtrix import MrtrixSourceAdapter, MrtrixSinkAdapter
from .files import (
    StreamlineFormat,
    StreamlineFileSource,
    StreamlineFileSink,
    resolve_source_path,
    open_source_adapter,
)

__all__ = [
    # Errors
    "StreamlineFileError",
    "HeaderError",
    "DataError",
    # Binary codec
    "BinaryStreamError",
    "BinaryInputStream",
    "BinaryOutputStream",
    "native_endianness",
    # Labels
    "StreamlineLabelList",
    # Adapters
    "AdapterState",
    "SourceFileAdapter",
    "SinkFileAdapter",
    "TrackvisSourceAdapter",
    "TrackvisSinkAdapter",
    "MrtrixSourceAdapter",
    "MrtrixSinkAdapter",
    # Facade
    "StreamlineFormat",
    "StreamlineFileSource",
    "StreamlineFileSink",
    "resolve_source_path",
    "open_source_adapter",
]
