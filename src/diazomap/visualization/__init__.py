"""
visualization/__init__.py - Visualization subpackage for diazomap

Static figures for trait surfaces, hot/cold spot maps, dominant taxa,
diversity and ordination.

Usage
-----
    import diazomap as dz
    dz.visualization.plot_hotspots(table, gi)
    dz.visualization.plot_ordination(result.ordination)
"""

from .plots import (
    plot_diversity_by_group,
    plot_hotspots,
    plot_ordination,
    plot_surface,
    plot_top_taxa,
)

__all__ = [
    "plot_diversity_by_group",
    "plot_hotspots",
    "plot_ordination",
    "plot_surface",
    "plot_top_taxa",
]
