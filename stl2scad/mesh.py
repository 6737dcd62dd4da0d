"""Triangle aggregation: point/face indexing and bounding box.

Triangle *i* of the input owns points ``3i, 3i+1, 3i+2`` and face
``[3i, 3i+1, 3i+2]``.  Vertices are not merged across triangles; use
:meth:`Mesh.deduplicated` for a shared-vertex mesh.

Concurrency
-----------
With ``workers > 1`` triangles are copied in chunks by a thread pool.  The
dispatcher reserves each chunk's index range from an :class:`IndexCounter`
*before* submitting it, in input order, and workers write only inside their
reserved range.  The output order is therefore the input order whatever
order the chunks finish in; nothing is sorted afterwards.  The bounding box
is folded chunk by chunk with :meth:`BoundingBox.combine`, which is
commutative.

Deadline
--------
A deadline (seconds) stops dispatching new chunks once it expires.  Chunks
already running finish, and the filled prefix is returned with
``partial=True``.  Expiry is only checked between chunks; pass
``chunk_size=1`` to stop after any triangle.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import numpy.typing as npt

from .errors import DeadlineExceeded, EmptyMesh

logger = logging.getLogger(__name__)

__all__ = [
    "BoundingBox",
    "Mesh",
    "IndexCounter",
    "MeshAggregator",
    "aggregate_triangles",
]

_Vec3 = Tuple[float, float, float]

DEFAULT_CHUNK_SIZE = 4096


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned bounding box with componentwise *minimum* and *maximum*."""

    minimum: _Vec3
    maximum: _Vec3

    @classmethod
    def from_points(cls, points: npt.ArrayLike) -> "BoundingBox":
        """Bounding box of an ``(N, 3)`` point array; ``N == 0`` raises :class:`EmptyMesh`."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if len(pts) == 0:
            raise EmptyMesh("bounding box of zero points is undefined")
        lo = pts.min(axis=0)
        hi = pts.max(axis=0)
        return cls(
            (float(lo[0]), float(lo[1]), float(lo[2])),
            (float(hi[0]), float(hi[1]), float(hi[2])),
        )

    def combine(self, other: Optional["BoundingBox"]) -> "BoundingBox":
        """Smallest box containing both ``self`` and *other*."""
        if other is None:
            return self
        return BoundingBox(
            tuple(min(a, b) for a, b in zip(self.minimum, other.minimum)),
            tuple(max(a, b) for a, b in zip(self.maximum, other.maximum)),
        )

    @property
    def size(self) -> _Vec3:
        return tuple(hi - lo for lo, hi in zip(self.minimum, self.maximum))


@dataclass
class Mesh:
    """Indexed triangle mesh produced by :class:`MeshAggregator`.

    Attributes
    ----------
    points:
        ``(P, 3)`` float64 vertex positions in first-seen order.
    faces:
        ``(F, 3)`` int64 indices into *points*, in input triangle order.
    bounds:
        Bounding box over *points*.
    partial:
        ``True`` when aggregation stopped at its deadline before consuming
        every triangle.  Check it (or call :meth:`require_complete`) before
        treating the mesh as the whole model.
    source:
        Originating file, for diagnostics.
    """

    points: npt.NDArray[np.float64]
    faces: npt.NDArray[np.int64]
    bounds: BoundingBox
    partial: bool = False
    source: Optional[Path] = None
    expected_triangles: Optional[int] = field(default=None, repr=False)

    @property
    def n_triangles(self) -> int:
        return len(self.faces)

    def require_complete(self) -> "Mesh":
        """Return ``self``, or raise :class:`DeadlineExceeded` if partial."""
        if self.partial:
            raise DeadlineExceeded(
                f"aggregation stopped after {self.n_triangles} of "
                f"{self.expected_triangles} triangles",
                path=self.source,
                mesh=self,
            )
        return self

    def deduplicated(self) -> "Mesh":
        """Return a copy whose points are unique, kept in first-seen order."""
        uniq, first, inverse = np.unique(
            self.points, axis=0, return_index=True, return_inverse=True
        )
        order = np.argsort(first, kind="stable")
        rank = np.empty_like(order)
        rank[order] = np.arange(len(order))
        remap = rank[inverse.reshape(-1)]
        return Mesh(
            points=uniq[order],
            faces=remap[self.faces].astype(np.int64),
            bounds=self.bounds,
            partial=self.partial,
            source=self.source,
            expected_triangles=self.expected_triangles,
        )


# ---------------------------------------------------------------------------
# Shared state for one aggregation run
# ---------------------------------------------------------------------------

class IndexCounter:
    """Thread-safe fetch-and-add counter handing out point-index ranges."""

    def __init__(self, start: int = 0) -> None:
        self._value = start
        self._lock = threading.Lock()

    def reserve(self, n: int) -> int:
        """Reserve *n* consecutive indices and return the first one."""
        with self._lock:
            start = self._value
            self._value += n
            return start

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class _Arena:
    """Preallocated point/face storage written through reserved ranges."""

    def __init__(self, n_triangles: int) -> None:
        self.points = np.empty((3 * n_triangles, 3), dtype=np.float64)
        self.faces = np.empty((n_triangles, 3), dtype=np.int64)
        self.counter = IndexCounter()
        self.bounds: Optional[BoundingBox] = None
        self._bounds_lock = threading.Lock()

    def reserve(self, n_triangles: int) -> int:
        return self.counter.reserve(3 * n_triangles)

    def fill(self, start: int, chunk: np.ndarray) -> None:
        stop = start + 3 * len(chunk)
        self.points[start:stop] = chunk.reshape(-1, 3)
        self.faces[start // 3:stop // 3] = np.arange(start, stop, dtype=np.int64).reshape(-1, 3)
        box = BoundingBox.from_points(chunk)
        with self._bounds_lock:
            self.bounds = box.combine(self.bounds)


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

class MeshAggregator:
    """Turn a ``(F, 3, 3)`` triangle array into an indexed :class:`Mesh`.

    Parameters
    ----------
    workers:
        Thread count.  ``1`` processes triangles in order on the calling
        thread; ``None`` uses ``os.cpu_count()``.
    deadline:
        Optional time budget in seconds, armed when :meth:`aggregate` starts.
    chunk_size:
        Triangles per dispatched unit of work.  The deadline is checked
        between chunks, on both policies, so a chunk that has started always
        completes.  ``chunk_size=1`` gives per-triangle cancellation at the
        cost of more dispatch overhead.
    """

    def __init__(
        self,
        workers: Optional[int] = 1,
        deadline: Optional[float] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if workers is None:
            workers = os.cpu_count() or 1
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        if deadline is not None and deadline < 0:
            raise ValueError(f"deadline must be non-negative, got {deadline}")
        self.workers = workers
        self.deadline = deadline
        self.chunk_size = chunk_size

    def aggregate(self, triangles: npt.ArrayLike, *, source: Optional[Path] = None) -> Mesh:
        """Index *triangles* and compute their bounding box.

        Raises
        ------
        EmptyMesh
            *triangles* is empty.
        DeadlineExceeded
            The deadline expired before any triangle was aggregated.
        """
        tris = np.asarray(triangles, dtype=np.float64)
        if tris.size == 0:
            tris = tris.reshape(0, 3, 3)
        if tris.ndim != 3 or tris.shape[1:] != (3, 3):
            raise ValueError(f"triangles must have shape (F, 3, 3), got {tris.shape}")

        n = len(tris)
        if n == 0:
            raise EmptyMesh("no triangles to aggregate", path=source)

        expires = None if self.deadline is None else time.monotonic() + self.deadline
        arena = _Arena(n)
        if self.workers == 1:
            self._run_sequential(tris, arena, expires)
        else:
            self._run_threaded(tris, arena, expires)

        n_points = arena.counter.value
        n_done = n_points // 3
        partial = n_done < n
        if n_done == 0:
            raise DeadlineExceeded(
                f"deadline of {self.deadline}s expired before any triangle was aggregated",
                path=source,
            )
        if partial:
            logger.info("deadline reached: aggregated %d of %d triangles", n_done, n)
        else:
            logger.debug("aggregated %d triangles with %d worker(s)", n, self.workers)

        return Mesh(
            points=arena.points[:n_points],
            faces=arena.faces[:n_done],
            bounds=arena.bounds,
            partial=partial,
            source=Path(source) if source is not None else None,
            expected_triangles=n,
        )

    # -----------------------------------------------------------------------

    def _chunks(self, tris: np.ndarray):
        for lo in range(0, len(tris), self.chunk_size):
            yield tris[lo:lo + self.chunk_size]

    @staticmethod
    def _expired(expires: Optional[float]) -> bool:
        return expires is not None and time.monotonic() >= expires

    def _run_sequential(self, tris: np.ndarray, arena: _Arena, expires: Optional[float]) -> None:
        for chunk in self._chunks(tris):
            if self._expired(expires):
                return
            arena.fill(arena.reserve(len(chunk)), chunk)

    def _run_threaded(self, tris: np.ndarray, arena: _Arena, expires: Optional[float]) -> None:
        # Bounded in-flight work keeps the deadline check close to real progress.
        max_in_flight = 2 * self.workers
        pending: set[Future] = set()
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="stl2scad") as pool:
            try:
                for chunk in self._chunks(tris):
                    if self._expired(expires):
                        break
                    while len(pending) >= max_in_flight:
                        done, pending = wait(pending, return_when=FIRST_COMPLETED)
                        for fut in done:
                            fut.result()
                    start = arena.reserve(len(chunk))
                    pending.add(pool.submit(arena.fill, start, chunk))
            finally:
                done, _ = wait(pending)
            for fut in done:
                fut.result()


def aggregate_triangles(
    triangles: npt.ArrayLike,
    *,
    workers: Optional[int] = 1,
    deadline: Optional[float] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    source: Optional[Path] = None,
) -> Mesh:
    """Shorthand for ``MeshAggregator(...).aggregate(triangles)``."""
    aggregator = MeshAggregator(workers=workers, deadline=deadline, chunk_size=chunk_size)
    return aggregator.aggregate(triangles, source=source)
