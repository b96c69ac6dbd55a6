import os
import warnings

import numpy as np
import pytest
import scipy.sparse as sp
from sklearn.base import clone
from sklearn.exceptions import NotFittedError

from fast_tmfg import TMFGWarning, tmfg
from tmfg_filter import TMFGFilter


@pytest.fixture
def X():
    rng = np.random.default_rng(0)
    # two correlated blocks of features
    factors = rng.standard_normal((200, 2))
    loadings = np.zeros((2, 12))
    loadings[0, :6] = 1.0
    loadings[1, 6:] = 1.0
    return factors @ loadings + rng.standard_normal((200, 12))


def test_precomputed_matches_builder(X):
    W = np.square(np.corrcoef(X, rowvar=False))
    est = TMFGFilter().fit(W)
    res = tmfg(W, clique_tree=True)

    np.testing.assert_array_equal(est.adjacency_, res.adjacency)
    np.testing.assert_array_equal(est.triangles_, res.triangles)
    np.testing.assert_array_equal(est.separators_, res.separators)
    np.testing.assert_array_equal(est.cliques_, res.cliques)
    np.testing.assert_array_equal(est.clique_tree_, res.clique_tree)
    np.testing.assert_array_equal(est.peo_, res.insertion_order)
    assert est.n_features_in_ == 12


def test_squared_correlation_affinity(X):
    with warnings.catch_warnings():
        warnings.simplefilter("error", TMFGWarning)
        est = TMFGFilter(affinity="squared_correlation").fit(X)

    np.testing.assert_allclose(
        est.affinity_matrix_, np.square(np.corrcoef(X, rowvar=False))
    )
    A = est.get_adjacency()
    assert A.shape == (12, 12)
    assert np.count_nonzero(np.triu(A, 1)) == 3 * 12 - 6
    assert est.triangles_.shape == (20, 3)
    assert est.cliques_.shape == (9, 4)


def test_abs_correlation_affinity(X):
    est = TMFGFilter(affinity="abs_correlation").fit(X)
    assert np.all(est.affinity_matrix_ >= 0)
    np.testing.assert_array_equal(
        est.adjacency_ != 0, tmfg(np.abs(np.corrcoef(X, rowvar=False))).adjacency != 0
    )


def test_raw_correlation_warns_on_negative_weights(X):
    X = X.copy()
    X[:, 11] = -X[:, 0] + 0.1 * X[:, 11]
    with pytest.warns(TMFGWarning, match="negative"):
        est = TMFGFilter(affinity="correlation").fit(X)
    assert np.count_nonzero(np.triu(est.adjacency_, 1)) == 3 * 12 - 6


def test_clique_tree_can_be_skipped(X):
    est = TMFGFilter(affinity="squared_correlation", compute_clique_tree=False).fit(X)
    assert est.clique_tree_ is None
    assert est.get_clique_tree() is None
    assert est.cliques_.shape == (9, 4)


def test_sparse_output(X):
    est = TMFGFilter(affinity="squared_correlation", sparse_output=True).fit(X)
    assert sp.issparse(est.adjacency_)
    assert sp.issparse(est.clique_tree_)
    assert est.adjacency_.nnz == 2 * (3 * 12 - 6)


def test_unfitted_estimator_raises():
    with pytest.raises(NotFittedError):
        TMFGFilter().get_adjacency()
    with pytest.raises(NotFittedError):
        TMFGFilter().get_clique_tree()


def test_unknown_affinity_raises(X):
    with pytest.raises(ValueError, match="Unknown affinity"):
        TMFGFilter(affinity="cosine").fit(X)


def test_params_round_trip():
    est = TMFGFilter(affinity="abs_correlation", gain_function_type="sumsquares")
    params = clone(est).get_params()
    assert params["affinity"] == "abs_correlation"
    assert params["gain_function_type"] == "sumsquares"
    assert params["compute_clique_tree"] is True


def test_fit_diagnostics_point_at_the_caller(X):
    X = X.copy()
    X[:, 11] = -X[:, 0] + 0.1 * X[:, 11]
    with pytest.warns(TMFGWarning, match="negative") as record:
        TMFGFilter(affinity="correlation").fit(X)
    assert os.path.basename(record[0].filename) == os.path.basename(__file__)


def test_correlation_adjacency_is_exactly_symmetric(X):
    A = TMFGFilter(affinity="squared_correlation").fit(X).adjacency_
    assert np.array_equal(A, A.T)
