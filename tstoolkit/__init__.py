"""MPEG transport stream inspection, statistics, bitrate, smoothing and SEI timestamp utilities."""

__version__ = "0.1.0"