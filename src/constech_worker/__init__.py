"""Constech Worker - autonomous GitHub development loop in isolated containers."""

from importlib import metadata

__all__ = ["cli", "core"]

try:
    __version__ = metadata.version("constech-worker")
except metadata.PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
