"""
config.py - Configuration and exceptions for diazomap

Contains:
- LoaderConfig: Column names and sample-selection settings
- AnalysisConfig: Parameters for every analysis stage
- DiazomapError and its subclasses
"""

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path

VALID_METRICS = ('euclidean', 'haversine')
VALID_DISTRIBUTIONS = ('normal', 'lognormal', 'uniform')


@dataclass
class LoaderConfig:
    """Configuration for metadata column names and sample selection."""

    # Column names
    sample_id_col: str = "#SampleID"
    longitude_col: str = "longitude_deg"
    latitude_col: str = "latitude_deg"

    # Keyword filter: a sample qualifies if any column contains any keyword
    keyword_cols: tuple[str, ...] = ("env_material", "description", "title")
    keywords: tuple[str, ...] = ("soil", "sediment")

    # Taxonomic rank used for aggregation
    taxonomy_rank: str = "genus"

    # Validation settings
    strict_validation: bool = True  # If True, raise on unmatched sample IDs
    drop_empty_samples: bool = True  # Drop samples with zero total abundance

    def __post_init__(self):
        # JSON gives lists; keep tuples so the config stays hashable
        self.keyword_cols = tuple(self.keyword_cols)
        self.keywords = tuple(self.keywords)

    def get_coordinate_columns(self) -> tuple[str, str]:
        """
        Get longitude, latitude column names.

        Returns
        -------
        Tuple[str, str]
            (longitude_column, latitude_column)
        """
        return self.longitude_col, self.latitude_col


@dataclass
class AnalysisConfig:
    """
    Parameters for the analysis stages.

    Defaults follow common practice for each method; all of them are
    tunables rather than fixed constants.
    """

    # Trait: taken from a metadata column when set, otherwise simulated
    trait_column: str | None = None
    trait_name: str = "nif_potential"
    trait_distribution: str = "normal"
    trait_loc: float = 0.5
    trait_scale: float = 0.15
    seed: int = 42

    # IDW interpolation
    idw_power: float = 2.0
    idw_radius: float | None = None  # None -> half the max pairwise distance
    grid_cell_size: float | None = None  # None -> derived from grid_n_cols
    grid_n_cols: int = 100
    grid_padding: float = 0.0

    # Getis-Ord Gi*
    knn_k: int = 8
    distance_metric: str = "euclidean"
    hot_threshold: float = 1.96
    cold_threshold: float = -1.96

    # Group comparison
    top_k: int = 25
    alpha: float = 0.05

    # NMDS
    nmds_n_init: int = 4
    nmds_max_iter: int = 500
    nmds_eps: float = 1e-5

    loader: LoaderConfig = field(default_factory=LoaderConfig)

    def validate(self) -> None:
        """Check parameter ranges. Raises ValueError on the first problem."""
        if self.distance_metric not in VALID_METRICS:
            raise ValueError(
                f"Unknown distance_metric: {self.distance_metric}. "
                f"Use one of {VALID_METRICS}"
            )
        if self.trait_distribution not in VALID_DISTRIBUTIONS:
            raise ValueError(
                f"Unknown trait_distribution: {self.trait_distribution}. "
                f"Use one of {VALID_DISTRIBUTIONS}"
            )
        if self.knn_k < 1:
            raise ValueError(f"knn_k must be >= 1, got {self.knn_k}")
        if self.idw_power <= 0:
            raise ValueError(f"idw_power must be > 0, got {self.idw_power}")
        if self.idw_radius is not None and self.idw_radius <= 0:
            raise ValueError(f"idw_radius must be > 0, got {self.idw_radius}")
        if self.grid_cell_size is not None and self.grid_cell_size <= 0:
            raise ValueError(f"grid_cell_size must be > 0, got {self.grid_cell_size}")
        if self.grid_n_cols < 1:
            raise ValueError(f"grid_n_cols must be >= 1, got {self.grid_n_cols}")
        if self.cold_threshold >= self.hot_threshold:
            raise ValueError(
                f"cold_threshold ({self.cold_threshold}) must be below "
                f"hot_threshold ({self.hot_threshold})"
            )
        if self.top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {self.top_k}")
        if not 0 < self.alpha < 1:
            raise ValueError(f"alpha must be in (0, 1), got {self.alpha}")
        if self.nmds_n_init < 1 or self.nmds_max_iter < 1:
            raise ValueError("nmds_n_init and nmds_max_iter must be >= 1")

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dictionary."""
        d = asdict(self)
        d["loader"]["keyword_cols"] = list(self.loader.keyword_cols)
        d["loader"]["keywords"] = list(self.loader.keywords)
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "AnalysisConfig":
        """
        Create from a (possibly partial) dictionary.

        Unknown keys raise ValueError so that typos are not silently ignored.
        """
        d = dict(d)
        loader_d = d.pop("loader", None) or {}

        known = {f.name for f in fields(cls)}
        unknown = set(d) - known
        if unknown:
            raise ValueError(f"Unknown analysis config keys: {sorted(unknown)}")

        loader_known = {f.name for f in fields(LoaderConfig)}
        loader_unknown = set(loader_d) - loader_known
        if loader_unknown:
            raise ValueError(f"Unknown loader config keys: {sorted(loader_unknown)}")

        config = cls(loader=LoaderConfig(**loader_d), **d)
        config.validate()
        return config

    @classmethod
    def from_json(cls, path: str | Path) -> "AnalysisConfig":
        """Load from a JSON file."""
        with open(path) as fh:
            return cls.from_dict(json.load(fh))


class DiazomapError(Exception):
    """Base exception for diazomap errors."""

    pass


class MalformedInputError(DiazomapError):
    """Raised when input data is missing, non-numeric or inconsistent."""

    pass


class ColumnNotFoundError(MalformedInputError):
    """Raised when a required column is missing."""

    def __init__(self, column: str, table_name: str):
        self.column = column
        self.table_name = table_name
        super().__init__(f"Column '{column}' not found in {table_name}")


class SampleIDMismatchError(MalformedInputError):
    """Raised when sample IDs don't match across tables."""

    def __init__(self, missing_count: int, source: str, target: str, examples=()):
        self.missing_count = missing_count
        self.source = source
        self.target = target
        msg = f"{missing_count} samples in {source} are missing in {target}"
        if examples:
            msg += f" (e.g. {', '.join(map(str, examples))})"
        super().__init__(msg)


class InsufficientDataError(DiazomapError):
    """Raised when there are too few samples (or no variation) to compute a result."""

    pass


class NumericalFailureError(DiazomapError):
    """Raised when a computation diverges or hits an unguarded division by zero."""

    pass
