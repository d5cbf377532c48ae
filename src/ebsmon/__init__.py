"""ebsmon - incremental pattern scans over unzipped add-on files."""

__version__ = "0.1.0"
