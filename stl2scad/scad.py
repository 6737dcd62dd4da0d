"""OpenSCAD source generation for an aggregated :class:`~stl2scad.mesh.Mesh`.

The emitted text defines three things, all named after one identifier::

    function part_min() = [x, y, z];   // bounding-box minimum
    function part_max() = [x, y, z];   // bounding-box maximum
    module part(scale = 1) { scale(scale) polyhedron(points = [...], faces = [...]); }

Numbers are written with :func:`numpy.format_float_positional`, which ignores
the process locale and never falls back to exponent notation.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Iterable, Optional

import numpy as np

from .errors import InvalidIdentifier
from .mesh import BoundingBox, Mesh

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_DECIMALS",
    "format_number",
    "format_vector",
    "validate_identifier",
    "make_identifier",
    "emit_scad",
]

DEFAULT_DECIMALS = 14

_INDENT = "  "
_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")
_INVALID_RUN_RE = re.compile(r"[^A-Za-z0-9_]+")
_RESERVED = frozenset({
    "module", "function", "if", "else", "for", "let", "each",
    "assert", "echo", "include", "use", "true", "false", "undef",
    # built-ins called inside the emitted module body
    "scale", "polyhedron",
})


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

def format_number(value: float, decimals: int = DEFAULT_DECIMALS) -> str:
    """Format *value* with at most *decimals* fractional digits.

    Trailing zeros and a trailing decimal point are dropped, so ``1.0`` is
    written ``1``; negative zero is written ``0``.

    >>> format_number(0.1, 3)
    '0.1'
    >>> format_number(2.0 / 3.0, 4)
    '0.6667'
    """
    if decimals < 0:
        raise ValueError(f"decimals must be >= 0, got {decimals}")
    value = float(value)
    if not math.isfinite(value):
        raise ValueError(f"cannot write non-finite value {value!r} as OpenSCAD source")
    text = np.format_float_positional(value, precision=decimals, unique=True, trim="-")
    if float(text) == 0.0:
        return "0"
    return text


def format_vector(values: Iterable[float], decimals: int = DEFAULT_DECIMALS) -> str:
    """Format an iterable of numbers as an OpenSCAD vector literal ``[a, b, c]``."""
    return "[" + ", ".join(format_number(v, decimals) for v in values) + "]"


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

def validate_identifier(name: str) -> str:
    """Return *name* unchanged if it is a usable OpenSCAD module name.

    Raises
    ------
    InvalidIdentifier
        *name* is not ``[A-Za-z_][A-Za-z0-9_]*`` or is a reserved word or one
        of the built-ins the emitted module calls (``scale``, ``polyhedron``).
    """
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise InvalidIdentifier(f"{name!r} is not a valid OpenSCAD identifier")
    if name in _RESERVED:
        raise InvalidIdentifier(f"{name!r} is a reserved OpenSCAD word")
    return name


def make_identifier(stem: str) -> str:
    """Derive a module name from a filename stem.

    Runs of unusable characters collapse to ``_``; a leading digit gets a
    ``_`` prefix and reserved words a ``_`` suffix.

    >>> make_identifier("gear-v2 (final)")
    'gear_v2_final'
    >>> make_identifier("3d_part")
    '_3d_part'
    """
    if not re.search(r"[A-Za-z0-9]", stem):
        raise InvalidIdentifier(f"cannot derive an identifier from {stem!r}")
    name = _INVALID_RUN_RE.sub("_", stem).strip("_") or "_"
    if name[0].isdigit():
        name = "_" + name
    if name in _RESERVED:
        name += "_"
    return validate_identifier(name)


# ---------------------------------------------------------------------------
# Source text
# ---------------------------------------------------------------------------

def emit_scad(
    mesh: Mesh,
    identifier: str,
    *,
    decimals: int = DEFAULT_DECIMALS,
    bounds: Optional[BoundingBox] = None,
    source_name: Optional[str] = None,
) -> str:
    """Render *mesh* as OpenSCAD source.

    Parameters
    ----------
    mesh:
        Aggregated mesh; points and faces are written in stored order.
    identifier:
        Module name; also prefixes the ``_min``/``_max`` functions.
    decimals:
        Maximum fractional digits per coordinate.
    bounds:
        Bounding box to publish; defaults to ``mesh.bounds``.
    source_name:
        Written into a header comment when given.

    Returns
    -------
    str
        Newline-terminated source text.
    """
    validate_identifier(identifier)
    if decimals < 0:
        raise ValueError(f"decimals must be >= 0, got {decimals}")
    if bounds is None:
        bounds = mesh.bounds

    lines: list[str] = []
    if source_name is not None:
        lines.append(f"// Generated by stl2scad from {source_name}")
    if mesh.partial:
        lines.append(
            f"// WARNING: partial mesh, {mesh.n_triangles} of "
            f"{mesh.expected_triangles} triangles"
        )
    if lines:
        lines.append("")

    lines.append(f"function {identifier}_min() = {format_vector(bounds.minimum, decimals)};")
    lines.append(f"function {identifier}_max() = {format_vector(bounds.maximum, decimals)};")
    lines.append("")
    lines.append(f"module {identifier}(scale = 1) {{")
    lines.append(f"{_INDENT}scale(scale) polyhedron(")

    pad = _INDENT * 3
    lines.append(f"{_INDENT * 2}points = [")
    lines.append(",\n".join(pad + format_vector(p, decimals) for p in mesh.points.tolist()))
    lines.append(f"{_INDENT * 2}],")
    lines.append(f"{_INDENT * 2}faces = [")
    lines.append(",\n".join(f"{pad}[{a}, {b}, {c}]" for a, b, c in mesh.faces.tolist()))
    lines.append(f"{_INDENT * 2}]")
    lines.append(f"{_INDENT});")
    lines.append("}")

    logger.debug("emitted module %s: %d points, %d faces", identifier, len(mesh.points), len(mesh.faces))
    return "\n".join(lines) + "\n"
