"""End-to-end tests for stl2scad.convert and the ``python -m stl2scad`` CLI."""
from __future__ import annotations

import itertools
import re
import struct
import types

import numpy as np
import numpy.testing as npt
import pytest

import stl2scad.mesh as mesh_module
from stl2scad import ConversionOptions, convert_stl, stl_to_scad
from stl2scad.__main__ import main
from stl2scad.errors import (
    CorruptFile,
    DeadlineExceeded,
    EmptyMesh,
    InvalidIdentifier,
    MalformedVertexLine,
    StlError,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_UNIT_TRIANGLE = np.array([[[0, 0, 0], [1, 0, 0], [0, 1, 0]]], dtype=np.float64)

_REFERENCE_ASCII = (
    "solid s\nfacet normal 0 0 0\n outer loop\n vertex 0 0 0\n vertex 1 0 0\n"
    " vertex 0 1 0\n endloop\nendfacet\nendsolid s\n"
)

_EXPECTED_TRI_SCAD = (
    "// Generated by stl2scad from tri.stl\n"
    "\n"
    "function tri_min() = [0, 0, 0];\n"
    "function tri_max() = [1, 1, 0];\n"
    "\n"
    "module tri(scale = 1) {\n"
    "  scale(scale) polyhedron(\n"
    "    points = [\n"
    "      [0, 0, 0],\n"
    "      [1, 0, 0],\n"
    "      [0, 1, 0]\n"
    "    ],\n"
    "    faces = [\n"
    "      [0, 1, 2]\n"
    "    ]\n"
    "  );\n"
    "}\n"
)


def _write_binary_stl(triangles: np.ndarray, header: bytes = b"\x00" * 80,
                      count: int | None = None) -> bytes:
    header  = header.ljust(80, b"\x00")[:80]
    count   = struct.pack("<I", len(triangles) if count is None else count)
    records = bytearray()
    for tri in triangles:
        records += struct.pack("<fff", 0.0, 0.0, 0.0)
        for v in tri:
            records += struct.pack("<fff", float(v[0]), float(v[1]), float(v[2]))
        records += struct.pack("<H", 0)
    return header + count + bytes(records)


def _write_ascii_stl(triangles: np.ndarray) -> str:
    lines = ["solid test"]
    for tri in triangles:
        lines.append("  facet normal 0 0 0")
        lines.append("    outer loop")
        for v in tri:
            lines.append(f"      vertex {float(v[0])!r} {float(v[1])!r} {float(v[2])!r}")
        lines.append("    endloop")
        lines.append("  endfacet")
    lines.append("endsolid test")
    return "\n".join(lines) + "\n"


def _parse_scad(text: str) -> tuple[np.ndarray, np.ndarray]:
    """Read the points and faces literals back out of generated source."""
    match = re.search(r"points = \[(.*?)\],\s*faces = \[(.*?)\]\s*\);", text, re.S)
    assert match is not None
    vec = re.compile(r"\[([^\[\]]+)\]")
    points = [[float(t) for t in m.split(",")] for m in vec.findall(match.group(1))]
    faces  = [[int(t) for t in m.split(",")] for m in vec.findall(match.group(2))]
    return np.array(points, dtype=np.float64), np.array(faces, dtype=np.int64)


def _stepping_clock(monkeypatch):
    ticks = itertools.count()
    monkeypatch.setattr(mesh_module, "time", types.SimpleNamespace(monotonic=lambda: float(next(ticks))))


# ---------------------------------------------------------------------------
# Reference scenarios
# ---------------------------------------------------------------------------

class TestScenarios:
    def test_binary_unit_triangle(self, tmp_path):
        stl = tmp_path / "tri.stl"
        stl.write_bytes(_write_binary_stl(_UNIT_TRIANGLE))
        result = convert_stl(stl)
        assert result.format == "binary"
        assert result.identifier == "tri"
        assert result.text == _EXPECTED_TRI_SCAD
        assert result.mesh.bounds.minimum == (0.0, 0.0, 0.0)
        assert result.mesh.bounds.maximum == (1.0, 1.0, 0.0)

    def test_ascii_unit_triangle(self, tmp_path):
        stl = tmp_path / "tri.stl"
        stl.write_text(_REFERENCE_ASCII)
        result = convert_stl(stl)
        assert result.format == "ascii"
        assert result.text == _EXPECTED_TRI_SCAD

    def test_solid_headed_binary_fails_cleanly(self, tmp_path):
        stl = tmp_path / "cad.stl"
        stl.write_bytes(_write_binary_stl(_UNIT_TRIANGLE, header=b"solid exported by CAD"))
        with pytest.raises(StlError) as info:
            convert_stl(stl)
        assert isinstance(info.value, (EmptyMesh, MalformedVertexLine))
        assert info.value.path == stl

    def test_solid_headed_binary_with_verify_size(self, tmp_path):
        stl = tmp_path / "cad.stl"
        stl.write_bytes(_write_binary_stl(_UNIT_TRIANGLE, header=b"solid exported by CAD"))
        result = convert_stl(stl, ConversionOptions(verify_size=True))
        assert result.format == "binary"
        npt.assert_array_equal(result.mesh.faces, [[0, 1, 2]])


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------

class TestProperties:
    @pytest.mark.parametrize("n", [1, 12, 257])
    def test_binary_counts(self, tmp_path, n):
        rng = np.random.default_rng(n)
        stl = tmp_path / "mesh.stl"
        stl.write_bytes(_write_binary_stl(rng.uniform(-1, 1, size=(n, 3, 3))))
        result = convert_stl(stl)
        points, faces = _parse_scad(result.text)
        assert len(faces) == n
        assert len(points) == 3 * n

    def test_round_trip(self, tmp_path):
        rng = np.random.default_rng(42)
        tris = rng.uniform(-250, 250, size=(64, 3, 3)).astype(np.float32).astype(np.float64)
        stl = tmp_path / "mesh.stl"
        stl.write_bytes(_write_binary_stl(tris))
        points, faces = _parse_scad(convert_stl(stl).text)
        npt.assert_allclose(points, tris.reshape(-1, 3), rtol=0, atol=1e-12)
        npt.assert_array_equal(faces, np.arange(3 * 64).reshape(64, 3))

    def test_round_trip_low_precision(self, tmp_path):
        rng = np.random.default_rng(1)
        tris = rng.uniform(-10, 10, size=(16, 3, 3))
        stl = tmp_path / "mesh.stl"
        stl.write_text(_write_ascii_stl(tris))
        points, _ = _parse_scad(stl_to_scad(stl, max_decimal_places=3))
        npt.assert_allclose(points, tris.reshape(-1, 3), rtol=0, atol=5e-4 + 1e-12)

    def test_ascii_order(self, tmp_path):
        rng = np.random.default_rng(9)
        tris = rng.uniform(-1, 1, size=(20, 3, 3))
        stl = tmp_path / "mesh.stl"
        stl.write_text(_write_ascii_stl(tris))
        points, faces = _parse_scad(convert_stl(stl).text)
        npt.assert_allclose(points[faces], tris, atol=1e-13)

    def test_idempotent(self, tmp_path):
        rng = np.random.default_rng(3)
        stl = tmp_path / "mesh.stl"
        stl.write_bytes(_write_binary_stl(rng.uniform(-5, 5, size=(100, 3, 3))))
        assert convert_stl(stl).text == convert_stl(stl).text

    def test_threaded_output_identical(self, tmp_path):
        rng = np.random.default_rng(8)
        stl = tmp_path / "mesh.stl"
        stl.write_bytes(_write_binary_stl(rng.uniform(-5, 5, size=(300, 3, 3))))
        sequential = convert_stl(stl).text
        for workers in (2, 4, None):
            threaded = convert_stl(stl, ConversionOptions(workers=workers, chunk_size=9))
            assert threaded.text == sequential


# ---------------------------------------------------------------------------
# Options and failures
# ---------------------------------------------------------------------------

class TestOptions:
    def test_identifier_option(self, tmp_path):
        stl = tmp_path / "tri.stl"
        stl.write_bytes(_write_binary_stl(_UNIT_TRIANGLE))
        text = stl_to_scad(stl, identifier="bracket")
        assert "module bracket(scale = 1) {" in text
        assert "function bracket_min()" in text

    def test_invalid_identifier_option(self, tmp_path):
        stl = tmp_path / "tri.stl"
        stl.write_bytes(_write_binary_stl(_UNIT_TRIANGLE))
        with pytest.raises(InvalidIdentifier) as info:
            convert_stl(stl, ConversionOptions(identifier="2 fast"))
        assert info.value.path == stl

    def test_identifier_from_stem(self, tmp_path):
        stl = tmp_path / "gear-v2 (final).stl"
        stl.write_bytes(_write_binary_stl(_UNIT_TRIANGLE))
        assert convert_stl(stl).identifier == "gear_v2_final"

    def test_force_ascii_on_binary(self, tmp_path):
        stl = tmp_path / "tri.stl"
        stl.write_bytes(_write_binary_stl(_UNIT_TRIANGLE))
        with pytest.raises(EmptyMesh):
            convert_stl(stl, ConversionOptions(force_format="ascii"))

    def test_corrupt(self, tmp_path):
        stl = tmp_path / "bad.stl"
        stl.write_bytes(_write_binary_stl(_UNIT_TRIANGLE, count=3))
        with pytest.raises(CorruptFile) as info:
            convert_stl(stl)
        assert str(stl) in str(info.value)

    def test_zero_triangles(self, tmp_path):
        stl = tmp_path / "empty.stl"
        stl.write_bytes(_write_binary_stl(np.empty((0, 3, 3))))
        with pytest.raises(EmptyMesh) as info:
            convert_stl(stl)
        assert info.value.path == stl

    def test_malformed_vertex(self, tmp_path):
        stl = tmp_path / "bad.stl"
        stl.write_text(_REFERENCE_ASCII.replace("vertex 1 0 0", "vertex 1 0"))
        with pytest.raises(MalformedVertexLine) as info:
            convert_stl(stl)
        assert info.value.line == 5
        assert "line 5" in str(info.value)

    def test_deadline_raises_by_default(self, tmp_path, monkeypatch):
        stl = tmp_path / "mesh.stl"
        stl.write_bytes(_write_binary_stl(np.repeat(_UNIT_TRIANGLE, 5, axis=0)))
        _stepping_clock(monkeypatch)
        with pytest.raises(DeadlineExceeded) as info:
            convert_stl(stl, ConversionOptions(deadline=2.5, chunk_size=1))
        assert info.value.mesh.n_triangles == 2
        assert info.value.path == stl

    def test_deadline_allow_partial(self, tmp_path, monkeypatch):
        stl = tmp_path / "mesh.stl"
        stl.write_bytes(_write_binary_stl(np.repeat(_UNIT_TRIANGLE, 5, axis=0)))
        _stepping_clock(monkeypatch)
        result = convert_stl(stl, ConversionOptions(deadline=2.5, chunk_size=1, allow_partial=True))
        assert result.partial
        assert "// WARNING: partial mesh, 2 of 5 triangles" in result.text
        _, faces = _parse_scad(result.text)
        assert len(faces) == 2

    def test_deadline_before_first_chunk_with_allow_partial(self, tmp_path):
        stl = tmp_path / "mesh.stl"
        stl.write_bytes(_write_binary_stl(np.repeat(_UNIT_TRIANGLE, 5, axis=0)))
        with pytest.raises(DeadlineExceeded) as info:
            convert_stl(stl, ConversionOptions(deadline=0.0, workers=2, allow_partial=True))
        assert info.value.mesh is None
        assert info.value.path == stl

    @pytest.mark.parametrize("bad", [float("nan"), float("inf")])
    def test_non_finite_binary(self, tmp_path, bad):
        tri = _UNIT_TRIANGLE.copy()
        tri[0, 2, 0] = bad
        stl = tmp_path / "bad.stl"
        stl.write_bytes(_write_binary_stl(tri))
        with pytest.raises(StlError) as info:
            convert_stl(stl)
        assert isinstance(info.value, CorruptFile)
        assert info.value.path == stl
        assert info.value.offset == 84 + 12 + 4 * 6


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

class TestCli:
    def test_writes_next_to_input(self, tmp_path):
        stl = tmp_path / "tri.stl"
        stl.write_bytes(_write_binary_stl(_UNIT_TRIANGLE))
        assert main([str(stl)]) == 0
        assert (tmp_path / "tri.scad").read_text(encoding="utf-8") == _EXPECTED_TRI_SCAD

    def test_out_dir_and_options(self, tmp_path):
        stl = tmp_path / "tri.stl"
        stl.write_text(_REFERENCE_ASCII)
        out = tmp_path / "out"
        assert main([str(stl), "--out-dir", str(out), "--name", "wedge",
                     "--decimals", "4", "--workers", "2"]) == 0
        text = (out / "tri.scad").read_text(encoding="utf-8")
        assert "module wedge(scale = 1) {" in text

    def test_missing_file(self, tmp_path):
        assert main([str(tmp_path / "nope.stl")]) == 1

    def test_partial_failure(self, tmp_path):
        good = tmp_path / "good.stl"
        good.write_bytes(_write_binary_stl(_UNIT_TRIANGLE))
        bad = tmp_path / "bad.stl"
        bad.write_bytes(b"\x00" * 90)
        assert main([str(good), str(bad)]) == 1
        assert (tmp_path / "good.scad").exists()
        assert not (tmp_path / "bad.scad").exists()

    def test_name_with_several_inputs(self, tmp_path):
        with pytest.raises(SystemExit) as info:
            main([str(tmp_path / "a.stl"), str(tmp_path / "b.stl"), "--name", "x"])
        assert info.value.code == 2

    def test_negative_timeout(self, tmp_path):
        stl = tmp_path / "tri.stl"
        stl.write_bytes(_write_binary_stl(_UNIT_TRIANGLE))
        with pytest.raises(SystemExit) as info:
            main([str(stl), "--timeout", "-1"])
        assert info.value.code == 2
        assert not (tmp_path / "tri.scad").exists()

    def test_non_finite_binary(self, tmp_path):
        tri = _UNIT_TRIANGLE.copy()
        tri[0, 1, 1] = float("inf")
        stl = tmp_path / "inf.stl"
        stl.write_bytes(_write_binary_stl(tri))
        assert main([str(stl)]) == 1
        assert not (tmp_path / "inf.scad").exists()
