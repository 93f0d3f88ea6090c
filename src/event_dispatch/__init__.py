"""Priority-ordered asynchronous event dispatch."""

__version__ = "0.1.0"
