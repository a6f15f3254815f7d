"""
Streaming pipeline: one source, a chain of manipulators, several sinks

Elements are pulled from the source in blocks. Each block is filtered in
manipulator registration order, then presented to every sink: setup with
the whole surviving block, one put per survivor, then finish. Once the
source is exhausted every sink's done is called exactly once. An exception
from any stage aborts the run: done is never called, and the sinks and the
source get abort instead so that open files are released.
"""

from typing import Generic, List, Optional, TypeVar
import logging

from tqdm import tqdm

from .data_source import DataManipulator, DataSink, DataSource

logger = logging.getLogger(__name__)

T = TypeVar('T')


class Pipeline(Generic[T]):
    """
    Pull-based pipeline connecting a DataSource to manipulators and sinks
    """

    def __init__(
        self,
        source: DataSource,
        block_size: Optional[int] = None,
        progress: bool = False
    ):
        """
        Initialize pipeline

        Args:
            source: Element producer
            block_size: Number of elements buffered together (None = the
                whole source in one block)
            progress: Show a progress bar while running
        """
        self.source = source
        self.manipulators: List[DataManipulator] = []
        self.sinks: List[DataSink] = []
        self.block_size = None
        self.progress = progress

        if block_size is not None:
            self.set_block_size(block_size)

    def set_block_size(self, block_size: Optional[int]):
        if block_size is not None:
            if block_size < 1:
                raise ValueError(f"Block size must be positive, got {block_size}")
            blocked = [type(sink).__name__ for sink in self.sinks if sink.requires_full_block]
            if blocked:
                raise ValueError(
                    f"Sinks {blocked} need the whole dataset at once; block size cannot be set"
                )
        self.block_size = block_size

    def add_manipulator(self, manipulator: DataManipulator):
        self.manipulators.append(manipulator)

    def add_sink(self, sink: DataSink):
        if sink.requires_full_block and self.block_size is not None:
            raise ValueError(
                f"{type(sink).__name__} needs the whole dataset at once, "
                f"but the block size is {self.block_size}"
            )
        self.sinks.append(sink)

    def _read_block(self, pbar) -> List[T]:
        block = []
        while self.source.more() and (self.block_size is None or len(block) < self.block_size):
            block.append(self.source.get())
            if pbar is not None:
                pbar.update(1)
        return block

    def _filter_block(self, block: List[T]) -> List[T]:
        survivors = []
        for item in block:
            if all(manipulator.process(item) for manipulator in self.manipulators):
                survivors.append(item)
        return survivors

    def run(self) -> int:
        """
        Run the pipeline to completion

        Returns:
            Total number of elements that survived filtering
        """
        logger.info(
            f"Running pipeline: {len(self.manipulators)} manipulators, "
            f"{len(self.sinks)} sinks, block size {self.block_size or 'unlimited'}"
        )

        pbar = tqdm(desc="Streamlines", unit="streamline") if self.progress else None
        n_retained = 0
        n_blocks = 0

        try:
            while self.source.more():
                block = self._read_block(pbar)
                survivors = self._filter_block(block)
                n_blocks += 1

                logger.debug(f"Block {n_blocks}: {len(survivors)} of {len(block)} elements retained")

                view = tuple(survivors)
                for sink in self.sinks:
                    sink.setup(len(view), view)
                for item in view:
                    for sink in self.sinks:
                        sink.put(item)
                for sink in self.sinks:
                    sink.finish()

                n_retained += len(survivors)
        except Exception:
            logger.error(f"Pipeline failed after {n_retained} retained elements; aborting sinks and source")
            for sink in self.sinks:
                sink.abort()
            self.source.abort()
            raise
        finally:
            if pbar is not None:
                pbar.close()

        for sink in self.sinks:
            sink.done()
        self.source.done()

        logger.info(f"Pipeline complete: {n_retained} elements retained in {n_blocks} blocks")
        return n_retained
