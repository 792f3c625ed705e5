"""Single-node job queue that turns source videos into uploaded HLS bundles."""

__version__ = "1.1.1"
