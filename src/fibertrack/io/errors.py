"""
Exceptions raised by the streamline file codecs
"""


class StreamlineFileError(Exception):
    """Exception raised for missing, unrecognised or misused streamline files"""
    pass


class HeaderError(StreamlineFileError):
    """Exception raised for malformed file headers"""
    pass


class DataError(StreamlineFileError):
    """Exception raised when file contents are inconsistent with their header"""
    pass
