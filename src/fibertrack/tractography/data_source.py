"""
Pipeline stage interfaces

- DataSource: produces elements one at a time
- DataManipulator: transforms or vetoes elements
- DataSink: consumes elements, block by block
"""

from abc import ABC, abstractmethod
from typing import Generic, Sequence, TypeVar

T = TypeVar('T')


class DataSource(ABC, Generic[T]):
    """Responsible for reading or generating data elements"""

    @abstractmethod
    def more(self) -> bool:
        """Whether further elements are available"""

    @abstractmethod
    def get(self) -> T:
        """Produce the next element"""

    def seekable(self) -> bool:
        return False

    def seek(self, n: int):
        """Reposition so that the next element produced is element n"""
        raise NotImplementedError(f"{type(self).__name__} does not support seeking")

    @abstractmethod
    def done(self):
        """Release any resources once the source is exhausted"""

    def abort(self):
        """Release any resources after a failed run, in place of done"""


class DataSink(ABC, Generic[T]):
    """
    Responsible for exporting or writing data elements

    Sinks that need every element at once (to compute whole-dataset
    statistics in setup) set requires_full_block; the pipeline then refuses
    to split its input into smaller blocks.
    """

    requires_full_block = False

    @abstractmethod
    def setup(self, count: int, items: Sequence[T]):
        """Called once per block, before any put, with the surviving block"""

    @abstractmethod
    def put(self, data: T):
        """Consume one element"""

    @abstractmethod
    def finish(self):
        """Called after the last put of each block"""

    @abstractmethod
    def done(self):
        """Called exactly once, after the source is exhausted"""

    def abort(self):
        """
        Called instead of done when a run fails

        Releases open resources without completing the output.
        """


class DataManipulator(ABC, Generic[T]):
    """Responsible for transforming or removing data elements"""

    @abstractmethod
    def process(self, data: T) -> bool:
        """
        Inspect and possibly modify an element in place

        Returns:
            False if the element should be removed
        """
