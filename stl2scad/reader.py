"""STL format detection and decoding.

Both decoders return triangles as a ``(F, 3, 3)`` float64 array where
``triangles[i, j]`` is the j-th vertex of the i-th triangle, in the order the
file lists them.  Normals and attribute bytes are discarded.

Format detection
----------------
:func:`sniff_format` looks only at the first five bytes: ``solid`` means ASCII,
anything else means binary.  Some CAD tools (e.g. SolidWorks) write ``solid``
at the start of *binary* headers too, so such files are classified ASCII and
then fail to decode.  :func:`detect_format` with ``verify_size=True`` checks
the binary-size invariant ``len == 84 + 50 * count`` first and is immune to
that case.
"""

from __future__ import annotations

import logging
import math
import struct
from pathlib import Path
from typing import BinaryIO, Optional, Tuple, Union

import numpy as np
import numpy.typing as npt

from .errors import CorruptFile, MalformedFacet, MalformedVertexLine, StlError, TruncatedFile

logger = logging.getLogger(__name__)

__all__ = [
    "ASCII",
    "BINARY",
    "sniff_format",
    "detect_format",
    "decode_binary",
    "decode_ascii",
    "read_triangles",
    "load_stl",
]

ASCII = "ascii"
BINARY = "binary"

_Triangles = npt.NDArray[np.float64]
_Bytes = Union[bytes, bytearray, memoryview]
_PathLike = Union[str, Path]

# ---------------------------------------------------------------------------
# Binary layout: 80-byte header, <u4 count, then 50-byte records
# ---------------------------------------------------------------------------
_MAGIC = b"solid"
_HEADER_SIZE = 80
_PREAMBLE_SIZE = _HEADER_SIZE + 4
_RECORD_DTYPE = np.dtype([
    ("normal", "<f4", (3,)),
    ("vertices", "<f4", (3, 3)),
    ("attr", "<u2"),
])
assert _RECORD_DTYPE.itemsize == 50


# ---------------------------------------------------------------------------
# Format detection
# ---------------------------------------------------------------------------

def sniff_format(source: Union[_Bytes, BinaryIO]) -> str:
    """Classify *source* as :data:`ASCII` or :data:`BINARY`.

    Parameters
    ----------
    source:
        Raw bytes, or a binary file object.  A seekable file object is
        returned to its original position.

    Raises
    ------
    TruncatedFile
        Fewer than five bytes are available.
    """
    if isinstance(source, (bytes, bytearray, memoryview)):
        head = bytes(source[:len(_MAGIC)])
    else:
        pos = source.tell() if source.seekable() else None
        head = source.read(len(_MAGIC))
        if pos is not None:
            source.seek(pos)

    if len(head) < len(_MAGIC):
        raise TruncatedFile(
            f"need {len(_MAGIC)} bytes to detect the format, got {len(head)}",
            stage="sniff",
            offset=len(head),
        )
    return ASCII if head == _MAGIC else BINARY


def _binary_size_matches(data: _Bytes) -> bool:
    if len(data) < _PREAMBLE_SIZE:
        return False
    count = struct.unpack_from("<I", data, _HEADER_SIZE)[0]
    return len(data) == _PREAMBLE_SIZE + _RECORD_DTYPE.itemsize * count


def detect_format(data: _Bytes, *, verify_size: bool = False) -> str:
    """Like :func:`sniff_format`, optionally trusting the binary-size invariant.

    With ``verify_size=True`` a file that starts with ``solid`` but whose
    length is exactly ``84 + 50 * count`` is classified binary.
    """
    fmt = sniff_format(data)
    if fmt == ASCII and verify_size and _binary_size_matches(data):
        logger.debug("'solid' header but binary size invariant holds; reading as binary")
        return BINARY
    return fmt


# ---------------------------------------------------------------------------
# Decoders
# ---------------------------------------------------------------------------

def decode_binary(data: _Bytes, *, path: Optional[_PathLike] = None) -> _Triangles:
    """Decode a binary STL bytestring into a ``(F, 3, 3)`` float64 array.

    Bytes past the last declared record are ignored.

    Raises
    ------
    TruncatedFile
        Fewer than 84 bytes (header plus triangle count).
    CorruptFile
        The declared count needs more than the available bytes, or a vertex
        coordinate is NaN or infinite (``offset`` points at that float).
    """
    size = len(data)
    if size < _PREAMBLE_SIZE:
        raise TruncatedFile(
            f"binary STL needs {_PREAMBLE_SIZE} bytes of header and count, got {size}",
            path=path,
            offset=size,
        )

    count = struct.unpack_from("<I", data, _HEADER_SIZE)[0]
    expected = _PREAMBLE_SIZE + _RECORD_DTYPE.itemsize * count
    if size < expected:
        raise CorruptFile(
            f"header declares {count} triangles ({expected} bytes), file holds {size} bytes",
            path=path,
            offset=size,
            expected=expected,
        )
    if count == 0:
        return np.empty((0, 3, 3), dtype=np.float64)

    records = np.frombuffer(data, dtype=_RECORD_DTYPE, count=count, offset=_PREAMBLE_SIZE)
    vertices = records["vertices"]
    finite = np.isfinite(vertices).reshape(count, 9)
    if not finite.all():
        # first offending coordinate: record index, then float within the 3x3 block
        tri, coord = np.argwhere(~finite)[0]
        offset = _PREAMBLE_SIZE + _RECORD_DTYPE.itemsize * int(tri) + 12 + 4 * int(coord)
        raise CorruptFile(
            f"non-finite vertex coordinate {vertices[tri].flat[coord]} in triangle {int(tri)}",
            path=path,
            offset=offset,
        )
    return vertices.astype(np.float64)  # (F, 3, 3)


def _parse_vertex(tokens: list[str], lineno: int, path: Optional[_PathLike]) -> list[float]:
    if len(tokens) != 3:
        raise MalformedVertexLine(
            f"expected 3 coordinates after 'vertex', got {len(tokens)}",
            path=path,
            line=lineno,
        )
    try:
        coords = [float(t) for t in tokens]
    except ValueError:
        raise MalformedVertexLine(
            f"non-numeric vertex coordinates {' '.join(tokens)!r}",
            path=path,
            line=lineno,
        ) from None
    if not all(math.isfinite(c) for c in coords):
        raise MalformedVertexLine(
            f"non-finite vertex coordinates {' '.join(tokens)!r}",
            path=path,
            line=lineno,
        )
    return coords


def decode_ascii(data: Union[_Bytes, str], *, path: Optional[_PathLike] = None) -> _Triangles:
    """Decode ASCII STL text into a ``(F, 3, 3)`` float64 array.

    ``vertex`` lines are grouped three at a time; a ``facet`` line may only
    open while no partial triangle is pending.

    Raises
    ------
    MalformedVertexLine
        A ``vertex`` line without exactly three finite numbers.
    MalformedFacet
        A facet with one or two vertices.
    """
    if isinstance(data, str):
        text = data
    else:
        text = bytes(data).decode("ascii", errors="replace")

    triangles: list[list[list[float]]] = []
    pending: list[list[float]] = []
    pending_line = 0
    for lineno, line in enumerate(text.splitlines(), start=1):
        parts = line.split()
        if not parts:
            continue
        keyword = parts[0].lower()
        if keyword == "facet":
            if pending:
                raise MalformedFacet(
                    f"facet opened before the previous one received 3 vertices "
                    f"(has {len(pending)})",
                    path=path,
                    line=lineno,
                )
            continue
        if keyword != "vertex":
            continue

        if not pending:
            pending_line = lineno
        pending.append(_parse_vertex(parts[1:], lineno, path))
        if len(pending) == 3:
            triangles.append(pending)
            pending = []

    if pending:
        raise MalformedFacet(
            f"incomplete facet at end of file ({len(pending)} of 3 vertices)",
            path=path,
            line=pending_line,
        )
    return np.array(triangles, dtype=np.float64).reshape(-1, 3, 3)


# ---------------------------------------------------------------------------
# File entry points
# ---------------------------------------------------------------------------

def read_triangles(
    path: _PathLike,
    *,
    force_format: Optional[str] = None,
    verify_size: bool = False,
) -> Tuple[_Triangles, str]:
    """Read an STL file and return ``(triangles, format)``.

    Parameters
    ----------
    path:
        Path to the ``.stl`` file.
    force_format:
        ``"ascii"`` or ``"binary"`` to skip detection.
    verify_size:
        Passed to :func:`detect_format`.
    """
    if force_format not in (None, ASCII, BINARY):
        raise ValueError(f"force_format must be 'ascii', 'binary' or None, got {force_format!r}")

    path = Path(path)
    raw = path.read_bytes()
    try:
        fmt = force_format or detect_format(raw, verify_size=verify_size)
        if fmt == BINARY:
            triangles = decode_binary(raw, path=path)
        else:
            triangles = decode_ascii(raw, path=path)
    except StlError as exc:
        exc.with_path(path)
        raise

    logger.debug("%s: %s STL, %d triangles", path, fmt, len(triangles))
    return triangles, fmt


def load_stl(path: _PathLike, **kwargs) -> _Triangles:
    """Load an STL file and return its triangles as a ``(F, 3, 3)`` float64 array.

    Keyword arguments are those of :func:`read_triangles`.
    """
    triangles, _ = read_triangles(path, **kwargs)
    return triangles
