"""
Service layer for the counting pipeline.

This subpackage contains code that interacts with the outside world:
files, file formats, external tools, logs and checkpoints on disk.
"""
