"""Camera frame post-processing: piecewise linear functions, stages and preview helpers."""

__version__ = "0.1.0"