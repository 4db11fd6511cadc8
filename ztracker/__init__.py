"""zTracker data engine: schema planning, merging, parsing and snapshot formatting."""

__version__ = "0.1.0"
