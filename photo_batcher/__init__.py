"""
photo-batcher: split large photo folders into numbered batch folders.

RAW+JPEG pairs stay together, runs can be interrupted and resumed, and move
runs can be undone.
"""

__version__ = "1.0.0"
