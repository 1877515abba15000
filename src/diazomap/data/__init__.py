"""
data - Sample tables, loading, trait simulation and export

This module contains the joined sample table, configuration classes,
input loaders and the flat-file writers.
"""

from .config import (
    LoaderConfig,
    AnalysisConfig,
    DiazomapError,
    MalformedInputError,
    ColumnNotFoundError,
    SampleIDMismatchError,
    InsufficientDataError,
    NumericalFailureError,
)

from .core import RANKS, Sample, SampleTable
from .loaders import (
    SampleTableValidator,
    build_sample_table,
    filter_by_keywords,
    load_abundance_table,
    load_abundance_tsv,
    load_biom,
    load_metadata,
    load_samples,
    parse_lineage,
)
from .traits import simulate_trait, trait_from_metadata
from .export import (
    export_to_csv_bundle,
    hotspots_to_geodataframe,
    write_hotspot_layer,
    write_surface_geotiff,
)

__all__ = [
    # Core classes
    'Sample',
    'SampleTable',
    'RANKS',

    # Configuration
    'LoaderConfig',
    'AnalysisConfig',

    # Loading
    'SampleTableValidator',
    'build_sample_table',
    'filter_by_keywords',
    'load_abundance_table',
    'load_abundance_tsv',
    'load_biom',
    'load_metadata',
    'load_samples',
    'parse_lineage',

    # Trait
    'simulate_trait',
    'trait_from_metadata',

    # Export
    'export_to_csv_bundle',
    'hotspots_to_geodataframe',
    'write_hotspot_layer',
    'write_surface_geotiff',

    # Exceptions
    'DiazomapError',
    'MalformedInputError',
    'ColumnNotFoundError',
    'SampleIDMismatchError',
    'InsufficientDataError',
    'NumericalFailureError',
]
