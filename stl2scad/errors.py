"""Typed failures raised while converting an STL file.

Every error carries the context needed for a precise diagnostic: the file
*path* (when known), the pipeline *stage* that failed, and, for parse errors,
the byte *offset* or 1-based *line* number.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from .mesh import Mesh

__all__ = [
    "StlError",
    "TruncatedFile",
    "CorruptFile",
    "MalformedVertexLine",
    "MalformedFacet",
    "EmptyMesh",
    "InvalidIdentifier",
    "DeadlineExceeded",
]


class StlError(ValueError):
    """Base class for all conversion failures."""

    stage = "convert"

    def __init__(
        self,
        message: str,
        *,
        path: Optional[Union[str, Path]] = None,
        stage: Optional[str] = None,
        offset: Optional[int] = None,
        line: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.path = Path(path) if path is not None else None
        if stage is not None:
            self.stage = stage
        self.offset = offset
        self.line = line

    def with_path(self, path: Union[str, Path]) -> "StlError":
        """Attach *path* if none is set yet and return ``self``."""
        if self.path is None:
            self.path = Path(path)
        return self

    def __str__(self) -> str:
        where = []
        if self.path is not None:
            where.append(str(self.path))
        if self.line is not None:
            where.append(f"line {self.line}")
        if self.offset is not None:
            where.append(f"offset {self.offset}")
        prefix = f"[{self.stage}] "
        if where:
            prefix += ", ".join(where) + ": "
        return prefix + self.message


class TruncatedFile(StlError):
    """Not enough bytes for the format marker, header or triangle count."""

    stage = "decode"


class CorruptFile(StlError):
    """The declared triangle count needs more bytes than the file holds."""

    stage = "decode"

    def __init__(self, message: str, *, expected: Optional[int] = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.expected = expected


class MalformedVertexLine(StlError):
    """A ``vertex`` line without exactly three finite numbers."""

    stage = "decode"


class MalformedFacet(StlError):
    """A facet that does not hold exactly three vertices."""

    stage = "decode"


class EmptyMesh(StlError):
    """No triangle was decoded, so there is nothing to emit."""

    stage = "aggregate"


class InvalidIdentifier(StlError):
    """The module name cannot be used as an OpenSCAD identifier."""

    stage = "emit"


class DeadlineExceeded(StlError):
    """Aggregation stopped at its deadline; :attr:`mesh` is the partial result."""

    stage = "aggregate"

    def __init__(self, message: str, *, mesh: Optional["Mesh"] = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.mesh = mesh
