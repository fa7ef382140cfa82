"""Generation workflow orchestration for the catalog content dashboard."""

__version__ = "0.1.0"
