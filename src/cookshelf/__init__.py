"""Cooklang recipe shelf: index, resolve, scale and report over a tree of recipes."""

__version__ = "0.1.0"
