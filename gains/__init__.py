"""G.AI.NS investment recommendation backend."""

__version__ = "0.3.0"
