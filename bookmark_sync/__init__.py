"""Mirror externally-sourced work items into a local bookmark collection."""

__version__ = "0.3.0"
