"""
diazomap.processing - Community comparison and ordination

Hotspot vs coldspot taxon ranking, Shannon diversity testing and
Bray-Curtis / NMDS ordination.
"""

from .diversity import *
from .ordination import *

__all__ = [
    # Diversity
    'split_by_hotspot', 'aggregate_group_abundance', 'rank_taxa',
    'shannon_diversity', 'compare_diversity', 'compare_groups',
    'DiversityTest', 'GroupComparison',

    # Ordination
    'bray_curtis', 'nmds', 'ordinate_samples', 'OrdinationResult',
]
