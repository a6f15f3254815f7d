"""
fibertrack: Streamline Tractography

Grows streamlines through a fibre orientation model, filters them and
writes them to TrackVis or MRtrix files through a streaming pipeline.
"""

__version__ = "0.1.0"
