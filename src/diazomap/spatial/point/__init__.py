"""
Point-based spatial analysis on sample coordinates.

Coordinates are (longitude, latitude) in decimal degrees. Distances are
planar ('euclidean', in degrees) or great-circle ('haversine', in km).

Modules
-------
- graph: Distance computation and k-NN weights graph
- interpolation: Regular grids and Inverse Distance Weighting
- patterns: Getis-Ord Gi* hot/cold spot detection

Quick Start
-----------
>>> import diazomap as dz
>>>
>>> surface = dz.spatial.point.interpolate_trait(table, power=2.0)
>>> graph, gi = dz.spatial.point.detect_hotspots(table, k=8)
>>> gi.hot_ids
"""

from .graph import (
    EARTH_RADIUS_KM,
    PointSpatialGraph,
    build_knn_graph,
    compute_distance_matrix,
    max_pairwise_distance,
    pairwise_distances,
)
from .interpolation import (
    GridSpec,
    InterpolatedSurface,
    default_search_radius,
    idw_interpolate,
    interpolate_trait,
)
from .patterns import (
    GiStarResult,
    HotspotClass,
    classify_gi,
    detect_hotspots,
    getis_ord_gi,
)

__all__ = [
    # Graph
    'EARTH_RADIUS_KM',
    'PointSpatialGraph',
    'build_knn_graph',
    'compute_distance_matrix',
    'max_pairwise_distance',
    'pairwise_distances',

    # Interpolation
    'GridSpec',
    'InterpolatedSurface',
    'default_search_radius',
    'idw_interpolate',
    'interpolate_trait',

    # Patterns
    'GiStarResult',
    'HotspotClass',
    'classify_gi',
    'detect_hotspots',
    'getis_ord_gi',
]
