"""stl2scad — STL mesh to OpenSCAD polyhedron source (numpy).

Reads triangulated surface meshes stored as binary or ASCII STL and writes
OpenSCAD source that rebuilds them as a ``polyhedron`` wrapped in a module,
together with functions returning the bounding box.

Quick start
-----------
>>> from stl2scad import convert_stl, ConversionOptions
>>> result = convert_stl("bracket.stl", ConversionOptions(max_decimal_places=6))
>>> result.mesh.faces.shape
(12, 3)
>>> print(result.text.splitlines()[2])
function bracket_min() = [0, 0, 0];

From the shell::

    python -m stl2scad bracket.stl --decimals 6

Output layout
-------------
Every triangle contributes three fresh points; face *i* is
``[3i, 3i+1, 3i+2]``.  Points and faces appear in the order the STL lists
them, also when aggregation runs on several threads (``workers > 1``).

Format detection
----------------
A file starting with ``solid`` is read as ASCII.  Binary files whose header
happens to start with ``solid`` fail to decode unless ``verify_size=True``
is passed, which trusts the binary-size invariant first.
"""

from .convert import ConversionOptions, ConversionResult, convert_stl, stl_to_scad
from .errors import (
    CorruptFile,
    DeadlineExceeded,
    EmptyMesh,
    InvalidIdentifier,
    MalformedFacet,
    MalformedVertexLine,
    StlError,
    TruncatedFile,
)
from .mesh import BoundingBox, Mesh, MeshAggregator, aggregate_triangles
from .reader import decode_ascii, decode_binary, detect_format, load_stl, read_triangles, sniff_format
from .scad import emit_scad, format_number, make_identifier, validate_identifier

__version__ = "0.1.0"

__all__ = [
    # Pipeline
    "ConversionOptions",
    "ConversionResult",
    "convert_stl",
    "stl_to_scad",

    # Reading
    "sniff_format",
    "detect_format",
    "decode_binary",
    "decode_ascii",
    "read_triangles",
    "load_stl",

    # Aggregation
    "BoundingBox",
    "Mesh",
    "MeshAggregator",
    "aggregate_triangles",

    # Emitting
    "emit_scad",
    "format_number",
    "make_identifier",
    "validate_identifier",

    # Errors
    "StlError",
    "TruncatedFile",
    "CorruptFile",
    "MalformedVertexLine",
    "MalformedFacet",
    "EmptyMesh",
    "InvalidIdentifier",
    "DeadlineExceeded",
]
