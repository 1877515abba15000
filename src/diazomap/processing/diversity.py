"""
diversity.py - Hotspot vs coldspot community comparison

Aggregates taxon abundances per Gi* group, ranks the dominant taxa,
computes per-sample Shannon diversity and tests whether diversity
differs between hotspots and coldspots (Mann-Whitney U).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

import numpy as np
import pandas as pd
from scipy.stats import mannwhitneyu

from diazomap.data.config import InsufficientDataError, MalformedInputError
from diazomap.spatial.point.patterns import GiStarResult, HotspotClass

if TYPE_CHECKING:
    from diazomap.data.core import SampleTable


def split_by_hotspot(gi_result: GiStarResult) -> tuple[pd.Index, pd.Index]:
    """Hot and cold sample IDs."""
    return gi_result.hot_ids, gi_result.cold_ids


def aggregate_group_abundance(abundance: pd.DataFrame,
                              sample_ids: Sequence[str],
                              group: str = 'group') -> pd.Series:
    """
    Pool raw abundances over a group of samples.

    Counts are summed per taxon across the group and normalized to each
    taxon's share of the group total. Taxa absent from the whole group
    are dropped.

    Parameters
    ----------
    abundance : pd.DataFrame
        Samples × taxa raw counts.
    sample_ids : sequence of str
        Members of the group.
    group : str
        Name used in messages.

    Returns
    -------
    pd.Series
        Relative abundance per taxon, indexed by taxon ID.
    """
    sample_ids = pd.Index(sample_ids)
    if len(sample_ids) == 0:
        raise InsufficientDataError(f"Group '{group}' has no samples")

    missing = sample_ids.difference(abundance.index)
    if len(missing) > 0:
        raise MalformedInputError(
            f"Group '{group}' has samples not in the abundance table: {missing[:5].tolist()}"
        )

    totals = abundance.loc[sample_ids].sum(axis=0)
    grand = totals.sum()
    if grand <= 0:
        raise InsufficientDataError(f"Group '{group}' has zero total abundance")

    totals = totals[totals > 0]
    rel = totals / grand
    rel.name = 'relative_abundance'
    return rel


def rank_taxa(aggregated: pd.Series, top_k: int = 25) -> pd.DataFrame:
    """
    Top-K taxa by aggregated abundance.

    Sorted by abundance descending; equal abundances are ordered by
    taxon ID ascending so the ranking is reproducible.

    Returns
    -------
    pd.DataFrame
        Columns: rank (1-based), taxon, relative_abundance.
    """
    if top_k < 1:
        raise ValueError(f"top_k must be >= 1, got {top_k}")
    df = pd.DataFrame({
        'taxon': aggregated.index.astype(str),
        'relative_abundance': aggregated.to_numpy(dtype=np.float64),
    })
    df = df.sort_values(['relative_abundance', 'taxon'],
                        ascending=[False, True], kind='mergesort')
    df = df.head(top_k).reset_index(drop=True)
    df.insert(0, 'rank', np.arange(1, len(df) + 1))
    return df


def shannon_diversity(abundance: pd.DataFrame) -> pd.Series:
    """
    Shannon entropy per sample.

    H = -sum(p * ln(p)) over the sample's own relative abundances,
    treating 0 * ln(0) = 0. A single taxon gives 0; an even spread over
    T taxa gives ln(T).

    Parameters
    ----------
    abundance : pd.DataFrame
        Samples × taxa, counts or relative abundances.

    Returns
    -------
    pd.Series
        Named 'shannon', indexed by sample.
    """
    counts = abundance.to_numpy(dtype=np.float64)
    if (counts < 0).any():
        row = np.argwhere(counts < 0)[0][0]
        raise MalformedInputError(f"Negative abundance in sample '{abundance.index[row]}'")

    totals = counts.sum(axis=1)
    if (totals <= 0).any():
        empty = abundance.index[totals <= 0].tolist()
        raise InsufficientDataError(
            f"Shannon diversity undefined for samples with zero abundance: {empty[:5]}"
        )

    props = counts / totals[:, np.newaxis]
    # H = -sum(p * log(p)), treating 0*log(0) = 0
    with np.errstate(divide='ignore', invalid='ignore'):
        log_props = np.log(props)
        log_props[~np.isfinite(log_props)] = 0
    shannon = -np.sum(props * log_props, axis=1)
    # a single-taxon sample is exactly 0, never -0.0
    shannon = np.where(shannon == 0, 0.0, shannon)

    return pd.Series(shannon, index=abundance.index, name='shannon')


@dataclass(frozen=True)
class DiversityTest:
    """
    Mann-Whitney U comparison of hotspot vs coldspot diversity.

    The p-value is two-tailed. Deciding significance is left to the
    caller through ``is_significant(alpha)``.
    """
    statistic: float
    pvalue: float
    n_hot: int
    n_cold: int
    median_hot: float
    median_cold: float
    test: str = 'mannwhitneyu'

    def is_significant(self, alpha: float = 0.05) -> bool:
        if not 0 < alpha < 1:
            raise ValueError(f"alpha must be in (0, 1), got {alpha}")
        return self.pvalue < alpha

    def to_dict(self) -> dict:
        return {
            'test': self.test,
            'statistic': self.statistic,
            'pvalue': self.pvalue,
            'n_hot': self.n_hot,
            'n_cold': self.n_cold,
            'median_hot': self.median_hot,
            'median_cold': self.median_cold,
        }


def compare_diversity(diversity: pd.Series,
                      hot_ids: Sequence[str],
                      cold_ids: Sequence[str]) -> DiversityTest:
    """
    Two-sided Mann-Whitney U test between hot and cold diversity values.

    Raises
    ------
    InsufficientDataError
        If either group is empty.
    """
    hot_ids, cold_ids = pd.Index(hot_ids), pd.Index(cold_ids)
    if len(hot_ids) == 0:
        raise InsufficientDataError("No hotspot samples to compare")
    if len(cold_ids) == 0:
        raise InsufficientDataError("No coldspot samples to compare")

    hot = diversity.loc[hot_ids].to_numpy(dtype=np.float64)
    cold = diversity.loc[cold_ids].to_numpy(dtype=np.float64)

    res = mannwhitneyu(hot, cold, alternative='two-sided')
    test = DiversityTest(
        statistic=float(res.statistic),
        pvalue=float(res.pvalue),
        n_hot=len(hot),
        n_cold=len(cold),
        median_hot=float(np.median(hot)),
        median_cold=float(np.median(cold)),
    )

    print(f"  ✓ Mann-Whitney U (Shannon, hot vs cold): U={test.statistic:.1f}, "
          f"p={test.pvalue:.4g} (n_hot={test.n_hot}, n_cold={test.n_cold})")
    return test


@dataclass(frozen=True, eq=False)
class GroupComparison:
    """
    Hotspot vs coldspot comparison.

    Attributes
    ----------
    top_hot, top_cold : pd.DataFrame
        Ranked taxa per group (rank, taxon, relative_abundance).
    aggregated_hot, aggregated_cold : pd.Series
        Full per-taxon relative abundance per group.
    diversity : pd.DataFrame
        Per-sample Shannon index and group label for hot and cold samples.
    test : DiversityTest
    rank : str
        Taxonomic rank taxa were collapsed to.
    """
    top_hot: pd.DataFrame
    top_cold: pd.DataFrame
    aggregated_hot: pd.Series
    aggregated_cold: pd.Series
    diversity: pd.DataFrame
    test: DiversityTest
    rank: str


def compare_groups(table: 'SampleTable',
                   gi_result: GiStarResult,
                   top_k: int = 25,
                   rank: str | None = 'genus') -> GroupComparison:
    """
    Compare taxonomic composition and diversity of hot vs cold samples.

    Parameters
    ----------
    table : SampleTable
    gi_result : GiStarResult
        Gi* labels for the same samples.
    top_k : int
        Taxa retained per group, by default 25.
    rank : str or None
        Rank to collapse taxa to before aggregating. None keeps the
        original taxa. Diversity is computed at the same resolution.

    Returns
    -------
    GroupComparison
    """
    hot_ids, cold_ids = split_by_hotspot(gi_result)
    if len(hot_ids) == 0:
        raise InsufficientDataError("No hotspot samples; group comparison is undefined")
    if len(cold_ids) == 0:
        raise InsufficientDataError("No coldspot samples; group comparison is undefined")

    unknown = gi_result.sample_ids.difference(table.sample_index)
    if len(unknown) > 0:
        raise MalformedInputError(
            f"Gi* result has samples not in the table: {unknown[:5].tolist()}"
        )

    if rank is not None:
        table = table.collapse_taxa(rank)
    abundance = table.abundance

    agg_hot = aggregate_group_abundance(abundance, hot_ids, group=HotspotClass.HOT.value)
    agg_cold = aggregate_group_abundance(abundance, cold_ids, group=HotspotClass.COLD.value)

    members = hot_ids.append(cold_ids)
    shannon = shannon_diversity(abundance.loc[members])
    group = pd.Series(
        [HotspotClass.HOT.value] * len(hot_ids) + [HotspotClass.COLD.value] * len(cold_ids),
        index=members, name='group',
    )
    diversity = pd.concat([shannon, group], axis=1)

    test = compare_diversity(shannon, hot_ids, cold_ids)

    print(f"  ✓ Group comparison at rank={rank}: {len(agg_hot)} hot taxa, "
          f"{len(agg_cold)} cold taxa (top {top_k} kept)")

    return GroupComparison(
        top_hot=rank_taxa(agg_hot, top_k),
        top_cold=rank_taxa(agg_cold, top_k),
        aggregated_hot=agg_hot,
        aggregated_cold=agg_cold,
        diversity=diversity,
        test=test,
        rank=rank or 'taxon',
    )
