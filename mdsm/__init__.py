"""mdsm - multi-threaded TSM backup scheduler."""

__version__ = "1.0.0"
