"""Public API for stl2scad: :func:`convert_stl` and :func:`stl_to_scad`."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .errors import StlError
from .mesh import DEFAULT_CHUNK_SIZE, Mesh, MeshAggregator
from .reader import read_triangles
from .scad import DEFAULT_DECIMALS, emit_scad, make_identifier, validate_identifier

logger = logging.getLogger(__name__)

__all__ = ["ConversionOptions", "ConversionResult", "convert_stl", "stl_to_scad"]


@dataclass
class ConversionOptions:
    """Caller-supplied settings for one conversion.

    Attributes
    ----------
    max_decimal_places:
        Maximum fractional digits written per coordinate.
    deadline:
        Optional aggregation time budget in seconds.
    identifier:
        OpenSCAD module name; derived from the file stem when ``None``.
    force_format:
        ``"ascii"`` or ``"binary"`` to bypass format detection.
    workers:
        Aggregation threads; ``None`` means one per CPU.
    verify_size:
        Let the binary-size invariant override a ``solid`` header.
    allow_partial:
        Return a partial result when the deadline expires instead of
        raising :class:`~stl2scad.errors.DeadlineExceeded`.
    """

    max_decimal_places: int = DEFAULT_DECIMALS
    deadline: Optional[float] = None
    identifier: Optional[str] = None
    force_format: Optional[str] = None
    workers: Optional[int] = 1
    verify_size: bool = False
    allow_partial: bool = False
    chunk_size: int = DEFAULT_CHUNK_SIZE


@dataclass
class ConversionResult:
    text: str
    mesh: Mesh
    identifier: str
    format: str

    @property
    def partial(self) -> bool:
        return self.mesh.partial


def convert_stl(
    path: Union[str, Path],
    options: Optional[ConversionOptions] = None,
) -> ConversionResult:
    """Convert one STL file to OpenSCAD source.

    Nothing is written to disk; the caller decides where ``result.text`` goes.

    Raises
    ------
    StlError
        Any decoding, aggregation or emitting failure, with the file path
        attached.
    """
    if options is None:
        options = ConversionOptions()
    path = Path(path)

    try:
        if options.identifier is not None:
            identifier = validate_identifier(options.identifier)
        else:
            identifier = make_identifier(path.stem)

        triangles, fmt = read_triangles(
            path,
            force_format=options.force_format,
            verify_size=options.verify_size,
        )
        aggregator = MeshAggregator(
            workers=options.workers,
            deadline=options.deadline,
            chunk_size=options.chunk_size,
        )
        mesh = aggregator.aggregate(triangles, source=path)
        if not options.allow_partial:
            mesh.require_complete()

        text = emit_scad(
            mesh,
            identifier,
            decimals=options.max_decimal_places,
            source_name=path.name,
        )
    except StlError as exc:
        exc.with_path(path)
        raise

    logger.info("%s: %d triangles -> module %s", path, mesh.n_triangles, identifier)
    return ConversionResult(text=text, mesh=mesh, identifier=identifier, format=fmt)


def stl_to_scad(path: Union[str, Path], **kwargs) -> str:
    """Convert an STL file and return the OpenSCAD source text.

    Keyword arguments are the fields of :class:`ConversionOptions`.

    Examples
    --------
    >>> from stl2scad import stl_to_scad
    >>> source = stl_to_scad("bracket.stl", max_decimal_places=6)
    >>> source.splitlines()[2]
    'function bracket_min() = [0, 0, 0];'
    """
    return convert_stl(path, ConversionOptions(**kwargs)).text
