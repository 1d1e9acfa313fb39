"""Implementation modules for pemgpg (core library and Flask surface)."""
