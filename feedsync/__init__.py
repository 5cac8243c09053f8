"""feedsync - multi-source clinical spreadsheet and roster import pipeline."""

__version__ = "1.0.0"
