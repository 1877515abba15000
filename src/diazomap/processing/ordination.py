"""
ordination.py - Bray-Curtis dissimilarity and non-metric MDS

Provides community dissimilarity between samples and a 2-D NMDS
embedding that preserves the rank order of those dissimilarities.

NMDS uses scikit-learn's non-metric MDS from random starting
configurations. A fixed seed reproduces results for a given
scikit-learn release; vegan's metaMDS will not give identical
coordinates or stress.
"""
from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist, squareform
from sklearn.isotonic import IsotonicRegression
from sklearn.manifold import MDS

from diazomap.data.config import (
    InsufficientDataError,
    MalformedInputError,
    NumericalFailureError,
)

if TYPE_CHECKING:
    from diazomap.data.core import SampleTable


def bray_curtis(abundance: pd.DataFrame) -> pd.DataFrame:
    """
    Pairwise Bray-Curtis dissimilarity between samples.

    Rows are converted to relative abundance first, then

        d(i, j) = sum_t |x_it - x_jt| / sum_t (x_it + x_jt)

    Parameters
    ----------
    abundance : pd.DataFrame
        Samples × taxa, non-negative.

    Returns
    -------
    pd.DataFrame
        Symmetric (n × n) matrix with zero diagonal, values in [0, 1].
    """
    X = abundance.to_numpy(dtype=np.float64)
    if not np.all(np.isfinite(X)):
        raise MalformedInputError("Abundance contains NaN or inf")
    if (X < 0).any():
        row = np.argwhere(X < 0)[0][0]
        raise MalformedInputError(f"Negative abundance in sample '{abundance.index[row]}'")

    totals = X.sum(axis=1)
    if (totals <= 0).any():
        empty = abundance.index[totals <= 0].tolist()
        raise InsufficientDataError(
            f"Bray-Curtis undefined for samples with zero abundance: {empty[:5]}"
        )

    rel = X / totals[:, np.newaxis]
    if len(rel) < 2:
        D = np.zeros((len(rel), len(rel)))
    else:
        D = squareform(pdist(rel, metric='braycurtis'))
    np.fill_diagonal(D, 0.0)
    D = np.clip(D, 0.0, 1.0)

    return pd.DataFrame(D, index=abundance.index, columns=abundance.index)


@dataclass(frozen=True, eq=False)
class OrdinationResult:
    """
    NMDS embedding.

    Attributes
    ----------
    coordinates : pd.DataFrame
        Columns NMDS1, NMDS2, ... indexed by sample.
    stress : float
        Kruskal stress-1 of the returned configuration (< 0.2 is usually
        considered interpretable).
    dissimilarity : pd.DataFrame
        Input dissimilarity matrix.
    n_iter : int
        Iterations used by the winning restart.
    best_init : int
        Index of the winning restart.
    converged : bool
    seed : int or None
    """
    coordinates: pd.DataFrame
    stress: float
    dissimilarity: pd.DataFrame
    n_iter: int
    best_init: int
    converged: bool
    seed: Optional[int]

    def to_dataframe(self, groups: Optional[pd.Series] = None) -> pd.DataFrame:
        """Coordinates with a stress column and optional group labels."""
        df = self.coordinates.copy()
        if groups is not None:
            df['group'] = groups.reindex(df.index).values
        df['stress'] = self.stress
        return df

    def __repr__(self) -> str:
        return (f"OrdinationResult ({len(self.coordinates)} samples, "
                f"stress={self.stress:.4f}, converged={self.converged})")


def _validate_dissimilarity(D: np.ndarray) -> None:
    if D.ndim != 2 or D.shape[0] != D.shape[1]:
        raise MalformedInputError(f"Dissimilarity matrix must be square, got {D.shape}")
    if not np.all(np.isfinite(D)):
        raise MalformedInputError("Dissimilarity matrix contains NaN or inf")
    if (D < 0).any():
        raise MalformedInputError("Dissimilarity matrix has negative entries")
    if not np.allclose(D, D.T):
        raise MalformedInputError("Dissimilarity matrix is not symmetric")


def _stress1(d: np.ndarray, dhat: np.ndarray) -> float:
    """Kruskal stress-1: sqrt(sum((d - dhat)^2) / sum(d^2))."""
    denom = np.sum(d ** 2)
    if denom == 0:
        return np.inf
    return float(np.sqrt(np.sum((d - dhat) ** 2) / denom))


def _kruskal_stress(delta: np.ndarray, X: np.ndarray) -> float:
    """Stress-1 of configuration ``X`` against condensed dissimilarities ``delta``."""
    d = pdist(X)
    dhat = IsotonicRegression(increasing=True).fit_transform(delta, d)
    return _stress1(d, dhat)


def _principal_axes(X: np.ndarray) -> np.ndarray:
    """Center and rotate to principal axes; each axis' largest |value| is positive."""
    Xc = X - X.mean(axis=0)
    _, _, Vt = np.linalg.svd(Xc, full_matrices=False)
    Xr = Xc.dot(Vt.T)
    idx = np.argmax(np.abs(Xr), axis=0)
    signs = np.sign(Xr[idx, np.arange(Xr.shape[1])])
    signs[signs == 0] = 1
    return Xr * signs


def nmds(
    dissimilarity: pd.DataFrame,
    n_components: int = 2,
    n_init: int = 4,
    max_iter: int = 500,
    eps: float = 1e-5,
    seed: Optional[int] = 42,
) -> OrdinationResult:
    """
    Non-metric multidimensional scaling (Kruskal NMDS).

    Finds a low-dimensional configuration whose Euclidean distances
    follow the rank order of the input dissimilarities, using
    scikit-learn's non-metric ``MDS`` on the precomputed matrix. Each of
    the ``n_init`` restarts is a separate single-start fit with its own
    random state drawn from ``seed``; the converged restart with the
    lowest Kruskal stress-1 is kept.

    Parameters
    ----------
    dissimilarity : pd.DataFrame
        Symmetric (n × n) matrix, e.g. from ``bray_curtis``.
    n_components : int
        Output dimensions, by default 2.
    n_init : int
        Random restarts, by default 4.
    max_iter : int
        Iteration cap per restart.
    eps : float
        Convergence tolerance passed to ``MDS``.
    seed : int, optional
        Seed for the restarts' random states.

    Returns
    -------
    OrdinationResult

    Raises
    ------
    InsufficientDataError
        Fewer than 3 samples, or all dissimilarities zero.
    NumericalFailureError
        No restart converged within ``max_iter``.
    """
    D = dissimilarity.to_numpy(dtype=np.float64)
    _validate_dissimilarity(D)
    n = D.shape[0]

    if n < 3:
        raise InsufficientDataError(f"NMDS needs at least 3 samples, got {n}")
    if n_components < 1:
        raise ValueError(f"n_components must be >= 1, got {n_components}")
    if n_init < 1 or max_iter < 1:
        raise ValueError("n_init and max_iter must be >= 1")

    delta = squareform(D, checks=False)
    if np.all(delta == 0):
        raise InsufficientDataError("All dissimilarities are zero; nothing to ordinate")

    print(f"\nRunning NMDS ({n} samples, {n_components} dims, n_init={n_init})")

    rng = np.random.default_rng(seed)
    states = rng.integers(0, np.iinfo(np.int32).max, size=n_init)
    # MDS checks symmetry more strictly than np.allclose
    D = (D + D.T) / 2.0
    best = None
    for run, state in enumerate(states):
        mds = MDS(
            n_components=n_components,
            dissimilarity="precomputed",
            metric=False,
            n_init=1,
            max_iter=max_iter,
            eps=eps,
            random_state=int(state),
        )
        X = mds.fit_transform(D)
        stress = _kruskal_stress(delta, X)
        if not np.isfinite(stress):
            raise NumericalFailureError(f"NMDS stress is non-finite in run {run + 1}")
        converged = mds.n_iter_ < max_iter
        print(f"  → run {run + 1}: stress={stress:.4f}, iterations={mds.n_iter_}"
              f"{'' if converged else ' (not converged)'}")
        if converged and (best is None or stress < best[1]):
            best = (X, stress, int(mds.n_iter_), run)

    if best is None:
        raise NumericalFailureError(
            f"NMDS did not converge in any of {n_init} restarts "
            f"(max_iter={max_iter}, eps={eps})"
        )

    X, stress, n_iter, run = best
    coords = pd.DataFrame(
        _principal_axes(X),
        index=dissimilarity.index,
        columns=[f'NMDS{i + 1}' for i in range(n_components)],
    )

    if stress >= 0.2:
        warnings.warn(
            f"NMDS stress {stress:.3f} >= 0.2; the ordination may be "
            "misleading. Consider more dimensions or restarts."
        )

    print(f"  ✓ NMDS complete: stress={stress:.4f} (run {run + 1})")

    return OrdinationResult(
        coordinates=coords,
        stress=stress,
        dissimilarity=dissimilarity.copy(),
        n_iter=n_iter,
        best_init=run,
        converged=True,
        seed=seed,
    )


def ordinate_samples(
    table: 'SampleTable',
    sample_ids: Optional[Sequence[str]] = None,
    rank: Optional[str] = 'genus',
    n_components: int = 2,
    n_init: int = 4,
    max_iter: int = 500,
    eps: float = 1e-5,
    seed: Optional[int] = 42,
) -> OrdinationResult:
    """
    Bray-Curtis + NMDS on a SampleTable.

    Parameters
    ----------
    table : SampleTable
    sample_ids : sequence of str, optional
        Samples to ordinate. Defaults to all.
    rank : str or None
        Collapse taxa to this rank first. None keeps the original taxa.
    """
    if sample_ids is not None:
        table = table.subset(sample_ids)
    if rank is not None:
        table = table.collapse_taxa(rank)
    return nmds(
        bray_curtis(table.abundance),
        n_components=n_components,
        n_init=n_init,
        max_iter=max_iter,
        eps=eps,
        seed=seed,
    )
