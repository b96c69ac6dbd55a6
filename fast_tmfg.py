"""
Triangulated Maximally Filtered Graph (TMFG)

This module filters a dense weight matrix `W` (e.g., correlations or
similarities) into a maximal planar graph with 3N-6 edges and 2N-4 triangular
faces. The graph is grown greedily from a seed tetrahedron by inserting, at
every step, the outstanding vertex into the face that maximises the gain (the
sum of weights between the vertex and the face's three corners).

High level flow:
1) Seed a tetrahedron with the 4 vertices of largest above-mean strength.
2) Fill a gain table for every (outstanding vertex, face) pair.
3) Repeatedly pick the best pair, split the face into three (T2 move), record
   the buried face as a separator and refresh the gains of the 3 new faces.
4) Assemble the weighted adjacency matrix from the recorded edges.
5) Optionally list the 4-cliques and the adjacency between 4-cliques that
   share a face.

Key terms
---------
Triangle
    A face of the current triangulation; a 3-tuple of vertex indices whose
    stored order decides how the face is split.
Separator
    A face that was buried by an insertion; a 3-clique that is not a face of
    the final graph.
Slot
    Position of a triangle in the triangle list. Slots are overwritten in place
    and never removed, so the first `n_triangles` slots are always live.

Notes
-----
- Ties in the gain table are resolved by the lowest outstanding vertex index,
  then by the lowest slot index.
- `W` is never modified; the adjacency matrix always carries the original
  weights even when the gains are computed on squared weights.

Reference: G. Previde Massara, T. Di Matteo, T. Aste, "Network Filtering for
Big Data: Triangulated Maximally Filtered Graph", arXiv:1505.02445 (2015).
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

import numpy as np
import scipy.sparse as sp
from sklearn.utils.validation import check_array

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
logger = logging.getLogger(__name__)
# Example usage from caller:
# logging.basicConfig(level=logging.INFO)  # or DEBUG


# -----------------------------------------------------------------------------
# Type aliases
# -----------------------------------------------------------------------------
Node = int
Triangle = Tuple[int, int, int]
Matrix = Union[np.ndarray, sp.csr_matrix]

MIN_VERTICES = 4
SMALL_MATRIX_SIZE = 9
PROGRESS_EVERY = 1000


# -----------------------------------------------------------------------------
# Errors and diagnostics
# -----------------------------------------------------------------------------
class TMFGError(ValueError):
    """Base class for errors raised while building a TMFG."""


class InvalidWeightMatrixError(TMFGError):
    """The weight matrix is not a finite, numeric, square matrix."""


class InsufficientVerticesError(TMFGError):
    """Fewer than 4 vertices: no tetrahedron can be formed."""


class TMFGWarning(UserWarning):
    """Advisory diagnostic about a violated precondition; the build continues."""


# -----------------------------------------------------------------------------
# Helper formatting (debug/pretty-print utilities)
# -----------------------------------------------------------------------------
def format_triangle(tri: Triangle) -> str:
    """Convert a face to a readable sorted list, e.g. ``"[0, 2, 5]"``."""
    return str(sorted(int(x) for x in tri))


# =============================================================================
# State
# =============================================================================
@dataclass
class TMFGState:
    """
    Everything the triangulation loop reads and writes.

    Attributes
    ----------
    inserted : list[int]
        Inserted vertices in insertion order (the first 4 are the seed).
    outside : list[int]
        Vertices not inserted yet, in ascending index order.
    triangles : list[Triangle]
        Faces by slot. Grows by 2 per insertion.
    separators : list[Triangle]
        Buried faces, one per insertion.
    gains : np.ndarray, shape (N, 2N-4)
        ``gains[v, t]`` is the gain of putting outstanding vertex `v` into
        slot `t`. Unused slots hold ``-inf``; rows of inserted vertices are
        zeroed once the vertex is placed.
    edges : np.ndarray of bool, shape (N, N)
        Directed edge marks, ``edges[v, u]`` set when `v` is joined to `u`.
    """

    inserted: List[Node]
    outside: List[Node]
    triangles: List[Triangle]
    separators: List[Triangle] = field(default_factory=list)
    gains: Optional[np.ndarray] = None
    edges: Optional[np.ndarray] = None

    @property
    def n_triangles(self) -> int:
        return len(self.triangles)


@dataclass(frozen=True)
class Insertion:
    """Outcome of one T2 move: `vertex` went into `slot`, burying `separator`."""

    vertex: Node
    slot: int
    separator: Triangle


@dataclass(frozen=True)
class TMFGResult:
    """
    Output of a TMFG build.

    Attributes
    ----------
    adjacency : np.ndarray or scipy.sparse.csr_matrix, shape (N, N)
        Weighted adjacency (weights from `W`, zero diagonal).
    triangles : np.ndarray of int, shape (2N-4, 3)
        Triangular faces.
    separators : np.ndarray of int, shape (N-4, 3)
        3-cliques that are not faces. All 3-cliques are
        ``np.vstack([triangles, separators])``.
    insertion_order : np.ndarray of int, shape (N,)
        Vertices in the order they entered the graph.
    cliques : np.ndarray of int, shape (N-3, 4), optional
        4-cliques; row 0 is the seed tetrahedron.
    clique_tree : np.ndarray or scipy.sparse.csr_matrix, shape (N-3, N-3), optional
        1 where two 4-cliques share exactly 3 vertices.
    """

    adjacency: Matrix
    triangles: np.ndarray
    separators: np.ndarray
    insertion_order: np.ndarray
    cliques: Optional[np.ndarray] = None
    clique_tree: Optional[Matrix] = None


# =============================================================================
# Input validation
# =============================================================================
def _validate_weights(W, stacklevel: int = 2) -> np.ndarray:
    """
    Check `W` and emit the advisory diagnostics.

    `stacklevel` is counted from this frame, as in ``warnings.warn``.

    Raises
    ------
    InvalidWeightMatrixError
        If `W` is not a 2-D, square, numeric matrix of finite values.
    InsufficientVerticesError
        If `W` has fewer than 4 rows.
    """
    try:
        W = check_array(
            W,
            dtype=np.float64,
            ensure_min_samples=0,
            ensure_min_features=0,
        )
    except (TypeError, ValueError) as exc:
        raise InvalidWeightMatrixError(f"Invalid weight matrix: {exc}") from exc

    n_rows, n_cols = W.shape
    if n_rows != n_cols:
        raise InvalidWeightMatrixError(
            f"Invalid weight matrix: expected a square matrix, got shape {W.shape}."
        )
    if n_rows < MIN_VERTICES:
        raise InsufficientVerticesError(
            f"Insufficient vertices: a TMFG needs at least {MIN_VERTICES} "
            f"vertices, got {n_rows}."
        )

    if n_rows < SMALL_MATRIX_SIZE:
        _warn(
            f"W matrix too small (N={n_rows} < {SMALL_MATRIX_SIZE}).", stacklevel + 1
        )
    if np.any(W < 0):
        _warn("W matrix has negative elements.", stacklevel + 1)
    return W


def _warn(message: str, stacklevel: int = 2) -> None:
    logger.warning(message)
    warnings.warn(message, TMFGWarning, stacklevel=stacklevel)


def gain_weights(W: np.ndarray, gain_function_type: str = "sum") -> np.ndarray:
    """
    Matrix the gain function scores with.

    ``"sum"`` scores with `W` itself, ``"sumsquares"`` with ``W ** 2``.
    """
    if gain_function_type == "sum":
        return W
    if gain_function_type == "sumsquares":
        return np.square(W)
    raise ValueError(f"Unknown gain function type: {gain_function_type}")


# =============================================================================
# Seed selection
# =============================================================================
def select_seed(weights: np.ndarray) -> Tuple[Tuple[Node, ...], List[Node]]:
    """
    Pick the 4 vertices with the largest sum of above-mean incident weights.

    Parameters
    ----------
    weights : np.ndarray, shape (N, N)
        Gain weights.

    Returns
    -------
    seed : tuple of 4 int
        Seed vertices, strongest first. Equal strengths keep index order.
    outside : list[int]
        The remaining vertices in ascending order.
    """
    above = weights > weights.mean()
    np.fill_diagonal(above, False)
    strength = np.where(above, weights, 0.0).sum(axis=1)
    order = np.argsort(-strength, kind="stable")
    seed = tuple(int(v) for v in order[:MIN_VERTICES])
    outside = sorted(int(v) for v in order[MIN_VERTICES:])
    return seed, outside


# =============================================================================
# Triangulation engine
# =============================================================================
def _face_gains(weights: np.ndarray, rows: np.ndarray, tri: Triangle) -> np.ndarray:
    return weights[np.ix_(rows, tri)].sum(axis=1)


def initial_state(
    weights: np.ndarray, seed: Tuple[Node, ...], outside: List[Node]
) -> TMFGState:
    """
    Build the tetrahedron on `seed` and the gain table against its 4 faces.

    Each face leaves out one seed vertex: slots hold
    ``(s0, s1, s2), (s1, s2, s3), (s0, s1, s3), (s0, s2, s3)``.
    """
    n = weights.shape[0]
    s0, s1, s2, s3 = seed
    state = TMFGState(
        inserted=list(seed),
        outside=list(outside),
        triangles=[(s0, s1, s2), (s1, s2, s3), (s0, s1, s3), (s0, s2, s3)],
    )

    state.edges = np.zeros((n, n), dtype=bool)
    for i in range(MIN_VERTICES):
        for j in range(i + 1, MIN_VERTICES):
            state.edges[seed[i], seed[j]] = True

    state.gains = np.full((n, 2 * n - 4), -np.inf)
    rows = np.asarray(state.outside, dtype=int)
    if rows.size:
        for slot, tri in enumerate(state.triangles):
            state.gains[rows, slot] = _face_gains(weights, rows, tri)
    return state


def _select_best(state: TMFGState) -> Tuple[int, int]:
    """
    Locate the best (outstanding vertex, slot) pair.

    Returns
    -------
    pos : int
        Position of the vertex in `state.outside`.
    slot : int
        Winning slot.

    Notes
    -----
    ``np.argmax`` returns the first maximum in row-major order; rows follow
    `state.outside` (ascending vertex index) and columns follow slot index.
    """
    live = state.n_triangles
    if len(state.outside) == 1:
        return 0, int(np.argmax(state.gains[state.outside[0], :live]))

    block = state.gains[np.asarray(state.outside, dtype=int), :live]
    pos, slot = np.unravel_index(int(np.argmax(block)), block.shape)
    return int(pos), int(slot)


def insertion_step(weights: np.ndarray, state: TMFGState) -> Insertion:
    """
    Perform one T2 move on `state` in place.

    Parameters
    ----------
    weights : np.ndarray, shape (N, N)
        Gain weights.
    state : TMFGState
        Current state; must have at least one outstanding vertex.

    Returns
    -------
    Insertion
        The vertex inserted, the slot it went into and the buried face.

    Notes
    -----
    Face ``(a, b, c)`` in slot `t` becomes ``(a, b, v)``; ``(a, c, v)`` and
    ``(b, c, v)`` are appended. Only the gains of these three slots are
    recomputed, for the vertices still outstanding.
    """
    if not state.outside:
        raise TMFGError("No outstanding vertex left to insert.")

    pos, slot = _select_best(state)
    v = state.outside.pop(pos)
    state.inserted.append(v)

    separator = state.triangles[slot]
    a, b, c = separator
    state.edges[v, list(separator)] = True
    state.separators.append(separator)

    state.triangles.append((a, c, v))
    state.triangles.append((b, c, v))
    state.triangles[slot] = (a, b, v)

    state.gains[v, :] = 0.0
    rows = np.asarray(state.outside, dtype=int)
    if rows.size:
        for t in (slot, state.n_triangles - 2, state.n_triangles - 1):
            state.gains[rows, t] = _face_gains(weights, rows, state.triangles[t])

    return Insertion(vertex=v, slot=slot, separator=separator)


# =============================================================================
# Graph assembly and clique hierarchy
# =============================================================================
def assemble_adjacency(
    edges: np.ndarray, W: np.ndarray, sparse: bool = False
) -> Matrix:
    """
    Weighted adjacency from directed edge marks.

    An edge exists if it was marked in either direction; it carries the
    weight ``W[i, j]`` with ``i < j``, mirrored below the diagonal so the
    result is exactly symmetric. The diagonal is zero.
    """
    mask = edges | edges.T
    upper = np.triu(np.where(mask, W, 0.0), 1)
    A = upper + upper.T
    return sp.csr_matrix(A) if sparse else A


def build_cliques(insertion_order: np.ndarray, separators: np.ndarray) -> np.ndarray:
    """
    List the N-3 4-cliques: the seed, then each separator with the vertex
    that buried it.
    """
    insertion_order = np.asarray(insertion_order, dtype=int)
    separators = np.asarray(separators, dtype=int).reshape(-1, 3)
    seed = insertion_order[:MIN_VERTICES].reshape(1, MIN_VERTICES)
    grown = np.column_stack([separators, insertion_order[MIN_VERTICES:]])
    return np.vstack([seed, grown]).astype(int)


def build_clique_tree(cliques: np.ndarray, sparse: bool = False) -> Matrix:
    """
    Adjacency between 4-cliques sharing exactly 3 vertices.

    Parameters
    ----------
    cliques : np.ndarray of int, shape (M, 4)
        4-cliques as produced by :func:`build_cliques`.
    sparse : bool, default=False
        Return a ``scipy.sparse.csr_matrix`` instead of a dense array.

    Returns
    -------
    np.ndarray of int or scipy.sparse.csr_matrix, shape (M, M)

    Notes
    -----
    No acyclicity check is made: with tied or pathological weights two
    4-cliques can share 3 vertices without one being built on the other, so
    the result is a clique graph that is not guaranteed to be a tree.
    """
    cliques = np.asarray(cliques, dtype=int)
    m = cliques.shape[0]
    n = int(cliques.max()) + 1 if m else 0
    membership = np.zeros((m, n), dtype=int)
    membership[np.arange(m)[:, None], cliques] = 1
    shared = membership @ membership.T
    tree = (shared == 3).astype(int)
    return sp.csr_matrix(tree) if sparse else tree


# =============================================================================
# TMFG
# =============================================================================
class TMFG:
    """
    Triangulated Maximally Filtered Graph builder.

    Parameters
    ----------
    gain_function_type : {"sum", "sumsquares"}, default="sum"
        ``"sum"`` scores a (vertex, face) pair with the sum of the 3 weights;
        ``"sumsquares"`` with the sum of their squares. Seed selection uses
        the same transformed weights.
    sparse_output : bool, default=False
        Return the adjacency matrix and the clique tree as
        ``scipy.sparse.csr_matrix``.

    Notes
    -----
    The builder holds configuration only; each call to :meth:`run` works on a
    fresh :class:`TMFGState`, so one instance can be reused.
    """

    def __init__(
        self,
        *,
        gain_function_type: str = "sum",
        sparse_output: bool = False,
    ) -> None:
        self._gf_type = gain_function_type
        self._sparse_output = sparse_output

    def run(
        self,
        W,
        *,
        cliques: bool = False,
        clique_tree: bool = False,
    ) -> TMFGResult:
        """
        Build the TMFG of `W`.

        Parameters
        ----------
        W : array-like, shape (N, N)
            Symmetric matrix of non-negative weights. The diagonal is ignored.
        cliques : bool, default=False
            Also list the 4-cliques.
        clique_tree : bool, default=False
            Also compute the 4-clique adjacency (implies `cliques`).

        Returns
        -------
        TMFGResult

        Raises
        ------
        InvalidWeightMatrixError
            Non-square, non-numeric or non-finite `W`.
        InsufficientVerticesError
            N < 4.
        ValueError
            Unknown gain function type.
        """
        return self._build(W, cliques=cliques, clique_tree=clique_tree, stacklevel=3)

    def _build(
        self, W, *, cliques: bool, clique_tree: bool, stacklevel: int
    ) -> TMFGResult:
        # stacklevel counts from this frame, as in warnings.warn
        W = _validate_weights(W, stacklevel + 1)
        weights = gain_weights(W, self._gf_type)
        n = W.shape[0]

        seed, outside = select_seed(weights)
        state = initial_state(weights, seed, outside)
        self._log_initial_state(state)

        for k in range(MIN_VERTICES + 1, n + 1):
            step = insertion_step(weights, state)
            self._log_insertion(k, n, step, state)

        adjacency = assemble_adjacency(state.edges, W, sparse=self._sparse_output)
        triangles = np.asarray(state.triangles, dtype=int).reshape(-1, 3)
        separators = np.asarray(state.separators, dtype=int).reshape(-1, 3)
        insertion_order = np.asarray(state.inserted, dtype=int)

        clique_list = None
        tree = None
        if cliques or clique_tree:
            clique_list = build_cliques(insertion_order, separators)
        if clique_tree:
            tree = build_clique_tree(clique_list, sparse=self._sparse_output)

        logger.info(
            "TMFG done: %d vertices, %d faces, %d separators",
            n,
            triangles.shape[0],
            separators.shape[0],
        )
        return TMFGResult(
            adjacency=adjacency,
            triangles=triangles,
            separators=separators,
            insertion_order=insertion_order,
            cliques=clique_list,
            clique_tree=tree,
        )

    # -------------------------------------------------------------------------
    # Debug logging
    # -------------------------------------------------------------------------
    def _log_initial_state(self, state: TMFGState) -> None:
        """Log the seed tetrahedron and remaining vertex count."""
        logger.info("  Seed tetrahedron: %s", state.inserted)
        logger.info("  Remaining vertices: %d", len(state.outside))
        logger.debug("---")

    def _log_insertion(
        self, k: int, n: int, step: Insertion, state: TMFGState
    ) -> None:
        logger.debug("Step %d", k)
        logger.debug("  Added vertex: %d", step.vertex)
        logger.debug(
            "  Into slot %d, buried face: %s", step.slot, format_triangle(step.separator)
        )
        logger.debug("  Remaining vertices: %d", len(state.outside))
        if k % PROGRESS_EVERY == 0:
            logger.info("TMFG: %0.2f per-cent done", 100.0 * k / n)


def tmfg(
    W,
    *,
    cliques: bool = False,
    clique_tree: bool = False,
    gain_function_type: str = "sum",
    sparse_output: bool = False,
) -> TMFGResult:
    """
    Build the TMFG of `W` in one call.

    Shortcut for ``TMFG(...).run(W, ...)``; see :class:`TMFG`.

    Examples
    --------
    >>> rng = np.random.default_rng(0)
    >>> W = np.square(np.corrcoef(rng.standard_normal((100, 20)), rowvar=False))
    >>> res = tmfg(W, clique_tree=True)
    >>> res.triangles.shape, res.cliques.shape
    ((36, 3), (17, 4))
    """
    builder = TMFG(gain_function_type=gain_function_type, sparse_output=sparse_output)
    return builder._build(
        W, cliques=cliques, clique_tree=clique_tree, stacklevel=3
    )
