from typing import Optional

import numpy as np
from sklearn.base import BaseEstimator
from sklearn.utils.validation import check_array, check_is_fitted

from fast_tmfg import TMFG as _TMFGBuilder


AFFINITIES = ("precomputed", "correlation", "squared_correlation", "abs_correlation")


class TMFGFilter(BaseEstimator):
    """
    A network filter that keeps the TMFG of a weight matrix.

    The estimator turns its input into a non-negative weight matrix (or takes
    one as is), builds the Triangulated Maximally Filtered Graph and stores the
    planar skeleton and its clique structure.

    Parameters
    ----------
    affinity : {'precomputed', 'correlation', 'squared_correlation', \
            'abs_correlation'}, default='precomputed'
        How to obtain the weight matrix from `X` in :meth:`fit`.
        'precomputed' takes `X` as the (n_features, n_features) weight matrix.
        The other options compute the Pearson correlation between the columns
        of `X` (n_samples, n_features) and use it raw, squared, or in absolute
        value. Raw correlations may be negative, which triggers a
        ``TMFGWarning``.

    gain_function_type : {'sum', 'sumsquares'}, default='sum'
        Gain function used to pick the next vertex and face. 'sum' adds the
        three weights between the vertex and the face, 'sumsquares' adds
        their squares.

    compute_clique_tree : bool, default=True
        If True, also compute the 4-clique adjacency (``clique_tree_``).

    sparse_output : bool, default=False
        If True, ``adjacency_`` and ``clique_tree_`` are
        ``scipy.sparse.csr_matrix``.

    Attributes
    ----------
    affinity_matrix_ : ndarray of shape (n_features, n_features)
        Weight matrix the graph was built from.

    adjacency_ : ndarray or csr_matrix of shape (n_features, n_features)
        Weighted adjacency of the filtered graph (3N-6 edges).

    triangles_ : ndarray of shape (2 * n_features - 4, 3)
        Triangular faces.

    separators_ : ndarray of shape (n_features - 4, 3)
        3-cliques that are not faces.

    cliques_ : ndarray of shape (n_features - 3, 4)
        4-cliques; row 0 is the seed tetrahedron.

    clique_tree_ : ndarray, csr_matrix or None
        Adjacency between 4-cliques sharing a face. None unless
        `compute_clique_tree` is True.

    peo_ : ndarray of shape (n_features,)
        Vertices in the order they were inserted.

    n_features_in_ : int
        Number of features seen during fit.
    """

    def __init__(
        self,
        *,
        affinity: str = "precomputed",
        gain_function_type: str = "sum",
        compute_clique_tree: bool = True,
        sparse_output: bool = False,
    ):
        self.affinity = affinity
        self.gain_function_type = gain_function_type
        self.compute_clique_tree = compute_clique_tree
        self.sparse_output = sparse_output

    def fit(self, X: np.ndarray, y=None) -> "TMFGFilter":
        """Fit the filter on X.

        Parameters
        ----------
        X : array-like of shape (n_features, n_features) or (n_samples, n_features)
            Weight matrix if ``affinity='precomputed'``, data otherwise.

        y : Ignored
            Not used, present for API consistency by convention.

        Returns
        -------
        self : object
            Returns the instance itself.
        """
        W = self._affinity_matrix(X)

        builder = _TMFGBuilder(
            gain_function_type=self.gain_function_type,
            sparse_output=self.sparse_output,
        )
        result = builder._build(
            W, cliques=True, clique_tree=self.compute_clique_tree, stacklevel=3
        )

        # store internals
        self.n_features_in_ = result.insertion_order.shape[0]
        self.affinity_matrix_ = W
        self.adjacency_ = result.adjacency
        self.triangles_ = result.triangles
        self.separators_ = result.separators
        self.cliques_ = result.cliques
        self.clique_tree_ = result.clique_tree
        self.peo_ = result.insertion_order
        return self

    def get_adjacency(self):
        check_is_fitted(self, attributes=("adjacency_",))
        return self.adjacency_

    def get_clique_tree(self) -> Optional[np.ndarray]:
        check_is_fitted(self, attributes=("cliques_",))
        return self.clique_tree_

    def _affinity_matrix(self, X) -> np.ndarray:
        if self.affinity not in AFFINITIES:
            raise ValueError(
                f"Unknown affinity: {self.affinity!r}. Expected one of {AFFINITIES}."
            )
        if self.affinity == "precomputed":
            # validated by the builder
            return np.asarray(X)

        X = check_array(
            X,
            ensure_min_samples=2,
            ensure_min_features=1,
            dtype=[np.float64, np.float32],
        )
        C = np.corrcoef(X, rowvar=False)
        if self.affinity == "squared_correlation":
            return np.square(C)
        if self.affinity == "abs_correlation":
            return np.abs(C)
        return C
