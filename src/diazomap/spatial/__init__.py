"""
spatial - Spatial analysis for diazomap

point : Sample-location based analysis
    Distances between sample coordinates, k-NN weights graphs,
    IDW interpolation and Getis-Ord Gi* hot/cold spot detection.

Usage
-----
>>> import diazomap as dz
>>>
>>> graph = dz.spatial.point.build_knn_graph(table, k=8)
>>> gi = dz.spatial.point.getis_ord_gi(table.trait, graph)
"""

from . import point

__all__ = [
    'point',
]
