"""Remote-controllable browser sessions with compact, ref-addressable page snapshots."""

__version__ = "0.1.0"
