"""
Utility Module

Logging setup and tracking run records.
"""

from .logger import FiberTrackLogger, TrackingRunRecord, get_logger, record_tracking_run

__all__ = [
    'FiberTrackLogger',
    'TrackingRunRecord',
    'get_logger',
    'record_tracking_run'
]
