"""Use cases for building the served server archive."""

from .transform_archive import TransformArchive, TransformResult

__all__ = ["TransformArchive", "TransformResult"]
