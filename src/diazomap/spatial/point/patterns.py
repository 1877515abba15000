"""
patterns.py - Hotspot detection with the Getis-Ord Gi* statistic

Gi* measures whether the weighted sum of a point's neighborhood, the
point itself included, is higher or lower than expected if values were
spatially random. It is already a z-score, so points are labeled by
thresholding it directly.

Example
-------
>>> graph = build_knn_graph(table, k=8)
>>> result = getis_ord_gi(table.trait.values, graph)
>>> result.to_dataframe()['label'].value_counts()
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

import numpy as np
import pandas as pd
from scipy import sparse

from diazomap.data.config import (
    InsufficientDataError,
    MalformedInputError,
    NumericalFailureError,
)

from .graph import PointSpatialGraph, build_knn_graph

if TYPE_CHECKING:
    from diazomap.data.core import SampleTable


class HotspotClass(Enum):
    """Gi* classification of a sample."""
    HOT = 'hot'
    COLD = 'cold'
    NOT_SIGNIFICANT = 'ns'

    def __str__(self) -> str:
        return self.value


# ========== Shared helpers ==========

def _row_normalize(W: sparse.spmatrix) -> sparse.csr_matrix:
    """Row-normalize a sparse weight matrix."""
    W = W.astype(np.float64).tocsr()
    row_sums = np.array(W.sum(axis=1)).flatten()
    row_sums[row_sums == 0] = 1  # isolated rows stay zero
    diag_inv = sparse.diags(1.0 / row_sums)
    return diag_inv.dot(W).tocsr()


def classify_gi(gi: np.ndarray,
                hot_threshold: float = 1.96,
                cold_threshold: float = -1.96) -> np.ndarray:
    """
    Label z-scores as HOT (> hot_threshold), COLD (< cold_threshold)
    or NOT_SIGNIFICANT.

    The defaults are the two-tailed critical values at alpha = 0.05.
    """
    if cold_threshold >= hot_threshold:
        raise ValueError(
            f"cold_threshold ({cold_threshold}) must be below "
            f"hot_threshold ({hot_threshold})"
        )
    labels = np.full(len(gi), HotspotClass.NOT_SIGNIFICANT, dtype=object)
    labels[gi > hot_threshold] = HotspotClass.HOT
    labels[gi < cold_threshold] = HotspotClass.COLD
    return labels


@dataclass(frozen=True, eq=False)
class GiStarResult:
    """
    Per-sample Getis-Ord Gi* z-scores and labels.

    Attributes
    ----------
    gi : pd.Series
        Gi* z-score per sample.
    labels : pd.Series
        HotspotClass per sample.
    hot_threshold, cold_threshold : float
    k : int
        Neighbors per sample in the weights graph (self excluded).
    """
    gi: pd.Series
    labels: pd.Series
    hot_threshold: float
    cold_threshold: float
    k: int

    @property
    def sample_ids(self) -> pd.Index:
        return self.gi.index

    def ids_for(self, label: HotspotClass) -> pd.Index:
        """Sample IDs with the given label, in table order."""
        return self.labels.index[(self.labels == label).to_numpy()]

    @property
    def hot_ids(self) -> pd.Index:
        return self.ids_for(HotspotClass.HOT)

    @property
    def cold_ids(self) -> pd.Index:
        return self.ids_for(HotspotClass.COLD)

    def counts(self) -> dict:
        return {label: int((self.labels == label).sum()) for label in HotspotClass}

    def to_dataframe(self) -> pd.DataFrame:
        """Columns: gi, label (string value of HotspotClass)."""
        return pd.DataFrame({
            'gi': self.gi,
            'label': self.labels.map(lambda c: c.value),
        })

    def __repr__(self) -> str:
        c = self.counts()
        return (f"GiStarResult ({len(self.gi)} samples, k={self.k}: "
                f"{c[HotspotClass.HOT]} hot, {c[HotspotClass.COLD]} cold, "
                f"{c[HotspotClass.NOT_SIGNIFICANT]} ns)")


# ========== getis_ord_gi ==========

def getis_ord_gi(
    values,
    graph: PointSpatialGraph,
    hot_threshold: float = 1.96,
    cold_threshold: float = -1.96,
) -> GiStarResult:
    """
    Compute the Getis-Ord Gi* hotspot statistic.

    Each sample's neighborhood is its k graph neighbors plus itself,
    equally weighted and row-standardized (weight 1/(k+1), so W_i = 1).
    With global mean X̄ and (population) standard deviation S over all
    N samples:

        Gi* = (Σ_j w_ij x_j - X̄ W_i) / (S sqrt((N Σ_j w_ij² - W_i²) / (N - 1)))

    Parameters
    ----------
    values : array-like
        One attribute value per graph node, in graph order.
    graph : PointSpatialGraph
        k-NN graph (no self loops).
    hot_threshold, cold_threshold : float
        z-score cut-offs, by default ±1.96 (two-tailed alpha = 0.05).

    Returns
    -------
    GiStarResult

    Raises
    ------
    InsufficientDataError
        If N <= k, or all values are identical (S = 0).
    NumericalFailureError
        If the variance term of the denominator is zero.
    """
    x = np.asarray(values, dtype=np.float64).ravel()
    n = len(x)
    k = int(graph.params.get('k', graph.neighbors.shape[1]))

    if n != graph.n_samples:
        raise MalformedInputError(
            f"{n} values for a graph with {graph.n_samples} samples"
        )
    if not np.all(np.isfinite(x)):
        bad = graph.sample_ids[~np.isfinite(x)].tolist()
        raise MalformedInputError(f"Non-finite attribute values for samples {bad[:5]}")
    if n <= k:
        raise InsufficientDataError(f"Gi* needs more than k={k} samples, got {n}")

    x_mean = x.mean()
    S = np.sqrt(x.var())
    if S == 0:
        raise InsufficientDataError(
            "All attribute values are identical; Gi* is undefined"
        )

    W = _row_normalize(graph.adjacency + sparse.eye(n, format='csr'))

    Wi  = np.array(W.sum(axis=1)).flatten()
    Wi2 = np.array(W.multiply(W).sum(axis=1)).flatten()
    Wx  = np.array(W.dot(x)).flatten()

    numerator   = Wx - x_mean * Wi
    spread      = (n * Wi2 - Wi ** 2) / (n - 1)
    if np.any(spread <= 0):
        bad = graph.sample_ids[spread <= 0].tolist()
        raise NumericalFailureError(
            f"Zero variance term in Gi* denominator for samples {bad[:5]} "
            f"(N={n}, k={k})"
        )
    gi = numerator / (S * np.sqrt(spread))

    labels = classify_gi(gi, hot_threshold, cold_threshold)
    result = GiStarResult(
        gi=pd.Series(gi, index=graph.sample_ids, name='gi'),
        labels=pd.Series(labels, index=graph.sample_ids, name='label'),
        hot_threshold=hot_threshold,
        cold_threshold=cold_threshold,
        k=k,
    )

    c = result.counts()
    print(f"  ✓ Getis-Ord Gi* (k={k}): {c[HotspotClass.HOT]} hot, "
          f"{c[HotspotClass.COLD]} cold, {c[HotspotClass.NOT_SIGNIFICANT]} ns")

    return result


def detect_hotspots(
    table: 'SampleTable',
    k: int = 8,
    metric: str = 'euclidean',
    hot_threshold: float = 1.96,
    cold_threshold: float = -1.96,
    graph: Optional[PointSpatialGraph] = None,
) -> tuple[PointSpatialGraph, GiStarResult]:
    """
    Build the k-NN graph for a SampleTable and run Gi* on its trait.

    Returns
    -------
    (PointSpatialGraph, GiStarResult)
    """
    if not table.has_trait:
        raise MalformedInputError("SampleTable has no trait; run simulate_trait first")
    if graph is None:
        graph = build_knn_graph(table, k=k, metric=metric)
    result = getis_ord_gi(table.trait.to_numpy(), graph,
                          hot_threshold=hot_threshold, cold_threshold=cold_threshold)
    return graph, result
