"""
Streamline label list sidecar (.trkl)

Stores, for each streamline in the accompanying geometry file, the set of
region labels it passed through. Entries are matched to streamlines purely
by position. Layout:

    magic "TRKL" (4 bytes), version (int32)
    dictionary size (int32), then per entry: index (int32), name (null-terminated)
    streamline count (int32)
    per streamline: label count (int32), labels (int32 x count)
"""

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union
import logging

from .binary_stream import BinaryInputStream, BinaryOutputStream
from .errors import DataError

logger = logging.getLogger(__name__)

LABEL_LIST_MAGIC = "TRKL"
LABEL_LIST_VERSION = 1


class StreamlineLabelList:
    """Ordered per-streamline label sets with an optional label dictionary"""

    def __init__(
        self,
        labels: Optional[Iterable[Iterable[int]]] = None,
        dictionary: Optional[Dict[int, str]] = None
    ):
        self.labels: List[Set[int]] = [set(entry) for entry in (labels or [])]
        self.dictionary: Dict[int, str] = dict(dictionary or {})

    def __len__(self) -> int:
        return len(self.labels)

    def __getitem__(self, index: int) -> Set[int]:
        return self.labels[index]

    def append(self, labels: Iterable[int]):
        self.labels.append(set(labels))

    def names(self, index: int) -> List[str]:
        """Dictionary names of the labels of one streamline (unknown labels as numbers)"""
        return [self.dictionary.get(label, str(label)) for label in sorted(self.labels[index])]

    def check_count(self, n_streamlines: int):
        """Raise DataError unless there is exactly one entry per streamline"""
        if len(self.labels) != n_streamlines:
            raise DataError(
                f"Label list has {len(self.labels)} entries but the streamline "
                f"file contains {n_streamlines} streamlines"
            )

    @classmethod
    def read(cls, path: Union[str, Path], endianness: Optional[str] = None) -> "StreamlineLabelList":
        """
        Read a label list file

        Args:
            path: Path to the .trkl file
            endianness: Byte order of the file (None = detect from the version field)

        Returns:
            StreamlineLabelList
        """
        stream = BinaryInputStream()
        stream.set_endianness(endianness or 'little')

        with open(path, 'rb') as f:
            stream.attach(f)
            magic = stream.read_string(n=4)
            if magic != LABEL_LIST_MAGIC:
                raise DataError(f"File {path} is not a streamline label list")
            version = stream.read_value('int32')
            if version != LABEL_LIST_VERSION and endianness is None:
                stream.set_endianness('big')
                stream.seek(4)
                version = stream.read_value('int32')
            if version != LABEL_LIST_VERSION:
                raise DataError(f"Unsupported label list version: {version}")

            dictionary = {}
            for _ in range(stream.read_value('int32')):
                index = stream.read_value('int32')
                dictionary[index] = stream.read_string()

            labels = []
            for _ in range(stream.read_value('int32')):
                n_labels = stream.read_value('int32')
                labels.append(stream.read_vector('int32', n_labels).tolist())
            stream.detach()

        logger.debug(f"Read labels for {len(labels)} streamlines from {path}")
        return cls(labels, dictionary)

    def write(self, path: Union[str, Path], endianness: str = 'little'):
        """Write the label list to a .trkl file"""
        stream = BinaryOutputStream()
        stream.set_endianness(endianness)

        with open(path, 'wb') as f:
            stream.attach(f)
            stream.write_string(LABEL_LIST_MAGIC)
            stream.write_value(LABEL_LIST_VERSION, 'int32')

            stream.write_value(len(self.dictionary), 'int32')
            for index, name in sorted(self.dictionary.items()):
                stream.write_value(index, 'int32')
                stream.write_string(name + '\0')

            stream.write_value(len(self.labels), 'int32')
            for entry in self.labels:
                stream.write_value(len(entry), 'int32')
                stream.write_vector(sorted(entry), 'int32')
            stream.detach()

        logger.debug(f"Wrote labels for {len(self.labels)} streamlines to {path}")
