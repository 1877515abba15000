"""
plots.py - Figures for diazomap results

Static matplotlib/seaborn figures for the interpolated trait surface,
Gi* hot/cold spots, dominant taxa per group, Shannon diversity and the
NMDS ordination.
"""

from typing import Dict, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from diazomap.spatial.point.patterns import HotspotClass

HOTSPOT_COLORS = {
    HotspotClass.HOT.value: '#d7301f',
    HotspotClass.COLD.value: '#2b8cbe',
    HotspotClass.NOT_SIGNIFICANT.value: '#bdbdbd',
}


def _finish(fig: plt.Figure, save_path: Optional[str], dpi: int, show: bool) -> plt.Figure:
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=dpi, bbox_inches='tight')
        print(f"Saved to {save_path}")

    if show:
        plt.show()
    else:
        plt.close(fig)

    return fig


def _clean_axes(ax) -> None:
    ax.spines['top'].set_visible(False)
    ax.spines['right'].set_visible(False)


def plot_surface(
    surface,
    table=None,
    cmap: str = 'viridis',
    point_size: float = 15.0,
    title: Optional[str] = None,
    figsize: Tuple[float, float] = (8, 6),
    save_path: Optional[str] = None,
    dpi: int = 300,
    show: bool = True
) -> plt.Figure:
    """
    Heatmap of an interpolated trait surface.

    Parameters
    ----------
    surface : InterpolatedSurface
        Output of ``idw_interpolate`` / ``interpolate_trait``.
    table : SampleTable, optional
        If given, sample locations are overlaid as points.
    cmap : str, optional
        Matplotlib colormap, by default 'viridis'
    point_size : float, optional
        Size of sample markers, by default 15.0
    title : str, optional
        Plot title
    figsize : tuple, optional
        Figure size, by default (8, 6)
    save_path : str, optional
        Path to save the figure
    dpi : int, optional
        Resolution for saved figure, by default 300
    show : bool, optional
        Whether to display the figure, by default True

    Returns
    -------
    plt.Figure
    """
    grid = surface.grid
    west, south, east, north = grid.bounds

    fig, ax = plt.subplots(figsize=figsize)
    # no-data cells are left transparent
    masked = np.ma.masked_invalid(surface.values)
    im = ax.imshow(masked, extent=(west, east, south, north),
                   origin='upper', cmap=cmap, aspect='auto')
    cbar = fig.colorbar(im, ax=ax)
    cbar.set_label('Interpolated trait', fontsize=11)

    if table is not None:
        lon, lat = table.get_coords().T
        ax.scatter(lon, lat, s=point_size, c='black', marker='o',
                   edgecolors='white', linewidths=0.5, label='samples')
        ax.legend(loc='upper right', frameon=False)

    ax.set_xlabel('Longitude', fontsize=12)
    ax.set_ylabel('Latitude', fontsize=12)
    ax.set_title(title or f'IDW surface (power={surface.power:g})',
                 fontsize=14, fontweight='bold')
    _clean_axes(ax)

    return _finish(fig, save_path, dpi, show)


def plot_hotspots(
    table,
    gi_result,
    colors: Optional[Dict[str, str]] = None,
    point_size: float = 30.0,
    show_scores: bool = False,
    title: Optional[str] = None,
    figsize: Tuple[float, float] = (8, 6),
    save_path: Optional[str] = None,
    dpi: int = 300,
    show: bool = True
) -> plt.Figure:
    """
    Map of samples colored by Gi* class (or by Gi* z-score).

    Parameters
    ----------
    table : SampleTable
    gi_result : GiStarResult
    colors : dict, optional
        Label value -> color. Defaults to red hot, blue cold, grey ns.
    show_scores : bool, optional
        Color by continuous Gi* z-score instead of class, by default False
    """
    df = table.get_coords(gi_result.sample_ids, as_dataframe=True).join(
        gi_result.to_dataframe()
    )

    fig, ax = plt.subplots(figsize=figsize)

    if show_scores:
        vmax = float(np.nanmax(np.abs(df['gi']))) or 1.0
        sc = ax.scatter(df['longitude'], df['latitude'], c=df['gi'],
                        cmap='RdBu_r', vmin=-vmax, vmax=vmax, s=point_size,
                        edgecolors='black', linewidths=0.3)
        cbar = fig.colorbar(sc, ax=ax)
        cbar.set_label('Gi* z-score', fontsize=11)
    else:
        palette = {**HOTSPOT_COLORS, **(colors or {})}
        for label in HotspotClass:
            sub = df[df['label'] == label.value]
            if len(sub) == 0:
                continue
            ax.scatter(sub['longitude'], sub['latitude'], s=point_size,
                       c=palette[label.value], edgecolors='black', linewidths=0.3,
                       label=f'{label.value} (n={len(sub)})')
        ax.legend(bbox_to_anchor=(1.05, 1), loc='upper left', frameon=False,
                  title='Gi* class')

    ax.set_xlabel('Longitude', fontsize=12)
    ax.set_ylabel('Latitude', fontsize=12)
    ax.set_title(title or f'Getis-Ord Gi* hot/cold spots (k={gi_result.k})',
                 fontsize=14, fontweight='bold')
    _clean_axes(ax)

    return _finish(fig, save_path, dpi, show)


def plot_top_taxa(
    comparison,
    n_taxa: int = 15,
    colors: Optional[Dict[str, str]] = None,
    figsize: Optional[Tuple[float, float]] = None,
    save_path: Optional[str] = None,
    dpi: int = 300,
    show: bool = True
) -> plt.Figure:
    """
    Side-by-side horizontal bar charts of the dominant taxa in hotspots
    and coldspots.

    Parameters
    ----------
    comparison : GroupComparison
    n_taxa : int, optional
        Taxa shown per group, by default 15
    figsize : tuple, optional
        If None, scales with ``n_taxa``.
    """
    palette = {**HOTSPOT_COLORS, **(colors or {})}
    if figsize is None:
        figsize = (12, max(4, 0.35 * n_taxa + 1))

    fig, axes = plt.subplots(1, 2, figsize=figsize)
    panels = [
        (HotspotClass.HOT.value, comparison.top_hot),
        (HotspotClass.COLD.value, comparison.top_cold),
    ]
    for ax, (label, top) in zip(axes, panels):
        top = top.head(n_taxa)
        sns.barplot(data=top, x='relative_abundance', y='taxon',
                    color=palette[label], ax=ax)
        ax.set_xlabel('Relative abundance', fontsize=11)
        ax.set_ylabel('')
        ax.set_title(f'{label} ({comparison.rank})', fontsize=12, fontweight='bold')
        _clean_axes(ax)
        ax.grid(axis='x', alpha=0.3)

    return _finish(fig, save_path, dpi, show)


def plot_diversity_by_group(
    comparison,
    alpha: float = 0.05,
    colors: Optional[Dict[str, str]] = None,
    figsize: Tuple[float, float] = (5, 5),
    save_path: Optional[str] = None,
    dpi: int = 300,
    show: bool = True
) -> plt.Figure:
    """
    Box plot of per-sample Shannon diversity by Gi* group, annotated
    with the Mann-Whitney U result.
    """
    palette = {**HOTSPOT_COLORS, **(colors or {})}
    order = [HotspotClass.HOT.value, HotspotClass.COLD.value]
    df = comparison.diversity

    fig, ax = plt.subplots(figsize=figsize)
    sns.boxplot(data=df, x='group', y='shannon', hue='group', order=order,
                palette=palette, legend=False, ax=ax)
    sns.stripplot(data=df, x='group', y='shannon', order=order,
                  color='black', size=3, alpha=0.6, ax=ax)

    test = comparison.test
    marker = ' *' if test.is_significant(alpha) else ''
    ax.set_title(f'Shannon diversity\nU={test.statistic:.1f}, p={test.pvalue:.3g}{marker}',
                 fontsize=12, fontweight='bold')
    ax.set_xlabel('')
    ax.set_ylabel('Shannon index (H)', fontsize=11)
    _clean_axes(ax)
    ax.grid(axis='y', alpha=0.3)

    return _finish(fig, save_path, dpi, show)


def plot_ordination(
    ordination,
    groups: Optional[pd.Series] = None,
    colors: Optional[Dict[str, str]] = None,
    point_size: float = 40.0,
    title: Optional[str] = None,
    figsize: Tuple[float, float] = (6, 5),
    save_path: Optional[str] = None,
    dpi: int = 300,
    show: bool = True
) -> plt.Figure:
    """
    Scatter of the first two NMDS axes, optionally colored by group.

    Parameters
    ----------
    ordination : OrdinationResult
    groups : pd.Series, optional
        Group label per sample (e.g. ``comparison.diversity['group']``).
    """
    coords = ordination.coordinates
    if coords.shape[1] < 2:
        raise ValueError("plot_ordination needs at least 2 NMDS dimensions")
    x, y = coords.columns[:2]

    fig, ax = plt.subplots(figsize=figsize)

    if groups is not None:
        df = coords.assign(group=groups.reindex(coords.index).values)
        palette = {**HOTSPOT_COLORS, **(colors or {})}
        present = [g for g in pd.unique(df['group'].dropna())]
        sns.scatterplot(data=df, x=x, y=y, hue='group', hue_order=present,
                        palette={g: palette.get(g, 'steelblue') for g in present},
                        s=point_size, edgecolor='black', linewidth=0.3, ax=ax)
        ax.legend(bbox_to_anchor=(1.05, 1), loc='upper left', frameon=False)
    else:
        ax.scatter(coords[x], coords[y], s=point_size, c='steelblue',
                   edgecolors='black', linewidths=0.3)

    ax.text(0.02, 0.98, f'stress = {ordination.stress:.3f}', transform=ax.transAxes,
            ha='left', va='top', fontsize=10)
    ax.set_xlabel(x, fontsize=12)
    ax.set_ylabel(y, fontsize=12)
    ax.set_title(title or 'NMDS (Bray-Curtis)', fontsize=14, fontweight='bold')
    _clean_axes(ax)

    return _finish(fig, save_path, dpi, show)
