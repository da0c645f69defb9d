"""Command line interface for photo-batcher."""
