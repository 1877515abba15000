"""
diazomap - Spatial hotspot analysis of microbiome samples
"""

# Core data structures
from .data.core import Sample, SampleTable
from .data.config import (
    AnalysisConfig,
    LoaderConfig,
    DiazomapError,
    MalformedInputError,
    InsufficientDataError,
    NumericalFailureError,
)
from .data.loaders import load_samples
from .pipeline import PipelineResult, run_pipeline, write_outputs

# Import submodules
from . import data
from . import processing
from . import spatial
from . import visualization

__version__ = '0.1.0'

__all__ = [
    # Core classes
    'Sample',
    'SampleTable',
    'AnalysisConfig',
    'LoaderConfig',

    # Pipeline
    'load_samples',
    'run_pipeline',
    'write_outputs',
    'PipelineResult',

    # Exceptions
    'DiazomapError',
    'MalformedInputError',
    'InsufficientDataError',
    'NumericalFailureError',

    # Submodules
    'data',
    'processing',
    'spatial',
    'visualization',
]
