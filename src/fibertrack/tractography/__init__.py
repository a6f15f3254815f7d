"""
Tractography Module

Streamline tracking through a fibre orientation model, run as a pipeline.

Main components:
- Streamline: tracked path with seed index, labels and properties
- Tracker: two-sided stepping with composable termination rules
- BedpostModel / PeakModel: orientation models sampled by the tracker
- SeedGenerator / TractographyDataSource: seeds and the lazy streamline source
- Pipeline: source -> filters -> sinks, in blocks
- LabelCountFilter / LengthFilter: streamline filters

Sinks live in the sinks and median submodules.
"""

from .streamline import Streamline
from .data_source import DataSource, DataSink, DataManipulator
from .models import DiffusionModel, BedpostModel, PeakModel
from .tracker import Tracker, TerminationReason, TRACKER_FLAGS
from .seeding import SeedGenerator, TractographyDataSource
from .filters import LabelCountFilter, LengthFilter
from .pipeline import Pipeline

__version__ = "0.1.0"

__all__ = [
    'Streamline',
    'DataSource',
    'DataSink',
    'DataManipulator',
    'DiffusionModel',
    'BedpostModel',
    'PeakModel',
    'Tracker',
    'TerminationReason',
    'TRACKER_FLAGS',
    'SeedGenerator',
    'TractographyDataSource',
    'LabelCountFilter',
    'LengthFilter',
    'Pipeline'
]
