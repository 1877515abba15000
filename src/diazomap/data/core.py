"""
core.py - Joined sample table for microbiome spatial analysis

SampleTable is the immutable record set every analysis stage consumes:
taxon abundances, taxonomy, sample metadata and coordinates, aligned
to a single master sample index. Transformations return new objects.
"""
from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import List, Optional, Union

import numpy as np
import pandas as pd

from .config import ColumnNotFoundError, InsufficientDataError, MalformedInputError

RANKS = ('kingdom', 'phylum', 'class', 'order', 'family', 'genus', 'species')
UNASSIGNED = 'Unassigned'


@dataclass(frozen=True)
class Sample:
    """
    A single sample record.

    Attributes
    ----------
    sample_id : str
    longitude, latitude : float
        WGS84 decimal degrees.
    trait : float or None
        Simulated trait value, if one has been attached.
    abundances : Mapping[str, float]
        Non-zero taxon abundances only; absent taxa are zero.
    """
    sample_id: str
    longitude: float
    latitude: float
    trait: Optional[float] = None
    abundances: Mapping[str, float] = field(default_factory=dict)

    @property
    def total_abundance(self) -> float:
        return float(sum(self.abundances.values()))

    @property
    def richness(self) -> int:
        return len(self.abundances)


def _readonly(arr) -> np.ndarray:
    arr = np.array(arr, dtype=np.float64)
    arr.setflags(write=False)
    return arr


class SampleTable:
    """
    Joined, coordinate-indexed sample table.

    Core Principles:
    - Master Index: sample IDs stored once, every component aligned to it
    - Immutable: accessors hand out copies or read-only arrays
    - Transformations (subset, collapse_taxa, with_trait) return new tables

    Parameters
    ----------
    abundance : pd.DataFrame
        Samples × taxa, non-negative counts or relative abundances.
    longitude, latitude : array-like
        One coordinate per sample (abundance row order).
    taxonomy : pd.DataFrame, optional
        Taxa × ranks. Taxa missing from it get empty rank labels.
    metadata : pd.DataFrame, optional
        Samples × fields, reindexed to the abundance rows.
    trait : pd.Series, optional
        One value per sample.
    """

    def __init__(self,
                 abundance: pd.DataFrame,
                 longitude,
                 latitude,
                 taxonomy: Optional[pd.DataFrame] = None,
                 metadata: Optional[pd.DataFrame] = None,
                 trait: Optional[pd.Series] = None):
        if not abundance.index.is_unique:
            dup = abundance.index[abundance.index.duplicated()].unique().tolist()
            raise MalformedInputError(f"Duplicate sample IDs: {dup[:5]}")
        if not abundance.columns.is_unique:
            dup = abundance.columns[abundance.columns.duplicated()].unique().tolist()
            raise MalformedInputError(f"Duplicate taxon IDs: {dup[:5]}")

        self._sample_index = pd.Index(abundance.index.astype(str), name='sample_id')
        self._abundance = pd.DataFrame(
            abundance.to_numpy(dtype=np.float64, copy=True),
            index=self._sample_index,
            columns=pd.Index(abundance.columns.astype(str), name='taxon'),
        )
        n = len(self._sample_index)

        self._longitude = _readonly(longitude)
        self._latitude = _readonly(latitude)
        if len(self._longitude) != n or len(self._latitude) != n:
            raise MalformedInputError(
                f"Coordinate arrays have {len(self._longitude)}/{len(self._latitude)} "
                f"entries for {n} samples"
            )

        if taxonomy is None:
            taxonomy = pd.DataFrame(index=self._abundance.columns, columns=list(RANKS))
        taxonomy = taxonomy.copy()
        taxonomy.index = taxonomy.index.astype(str)
        self._taxonomy = taxonomy.reindex(self._abundance.columns)
        self._taxonomy.index.name = 'taxon'

        if metadata is None:
            metadata = pd.DataFrame(index=self._sample_index)
        metadata = metadata.copy()
        metadata.index = metadata.index.astype(str)
        self._metadata = metadata.reindex(self._sample_index)

        if trait is not None:
            trait = pd.Series(trait, copy=True)
            if len(trait) != n:
                raise MalformedInputError(
                    f"Trait has {len(trait)} values for {n} samples"
                )
            trait.index = self._sample_index
            trait = trait.astype(np.float64)
        self._trait = trait

    # ========== Properties ==========

    @property
    def sample_index(self) -> pd.Index:
        return self._sample_index

    @property
    def taxon_index(self) -> pd.Index:
        return self._abundance.columns

    @property
    def n_samples(self) -> int:
        return len(self._sample_index)

    @property
    def n_taxa(self) -> int:
        return self._abundance.shape[1]

    @property
    def abundance(self) -> pd.DataFrame:
        return self._abundance.copy()

    @property
    def taxonomy(self) -> pd.DataFrame:
        return self._taxonomy.copy()

    @property
    def metadata(self) -> pd.DataFrame:
        return self._metadata.copy()

    @property
    def longitude(self) -> np.ndarray:
        return self._longitude

    @property
    def latitude(self) -> np.ndarray:
        return self._latitude

    @property
    def trait(self) -> Optional[pd.Series]:
        return None if self._trait is None else self._trait.copy()

    @property
    def trait_name(self) -> Optional[str]:
        return None if self._trait is None else self._trait.name

    @property
    def has_trait(self) -> bool:
        return self._trait is not None

    # ========== Access ==========

    def _get_sample_indices(self, sample_ids: Union[List[str], pd.Index]) -> np.ndarray:
        """Map sample IDs to integer positions, rejecting unknown IDs."""
        sample_ids = pd.Index(sample_ids).astype(str)
        indexer = self._sample_index.get_indexer(sample_ids)
        if (indexer < 0).any():
            missing = sample_ids[indexer < 0].tolist()
            raise MalformedInputError(f"Unknown sample IDs: {missing[:5]}")
        return indexer

    def get_coords(self,
                   sample_ids: Optional[Union[List[str], str]] = None,
                   as_dataframe: bool = False) -> Union[np.ndarray, pd.DataFrame]:
        """
        Get (longitude, latitude) coordinates.

        Parameters
        ----------
        sample_ids : list or str, optional
            Sample ID(s). If None, all samples.
        as_dataframe : bool
            If True, return as DataFrame

        Returns
        -------
        np.ndarray or pd.DataFrame
            Coordinates (N × 2), longitude first
        """
        if isinstance(sample_ids, str):
            sample_ids = [sample_ids]

        if sample_ids is not None:
            indices = self._get_sample_indices(sample_ids)
        else:
            indices = np.arange(self.n_samples)

        coords = np.column_stack([self._longitude[indices], self._latitude[indices]])

        if as_dataframe:
            return pd.DataFrame(
                coords,
                index=self._sample_index[indices],
                columns=['longitude', 'latitude'],
            )
        return coords

    def get_sample(self, sample_id: str) -> Sample:
        """Get a single sample record with its sparse abundance mapping."""
        idx = self._get_sample_indices([sample_id])[0]
        row = self._abundance.iloc[idx]
        nonzero = row[row > 0]
        return Sample(
            sample_id=self._sample_index[idx],
            longitude=float(self._longitude[idx]),
            latitude=float(self._latitude[idx]),
            trait=None if self._trait is None else float(self._trait.iloc[idx]),
            abundances=dict(nonzero.items()),
        )

    def samples(self) -> Iterator[Sample]:
        """Iterate over all samples in table order."""
        for sample_id in self._sample_index:
            yield self.get_sample(sample_id)

    def relative_abundance(self) -> pd.DataFrame:
        """
        Per-sample relative abundance (rows sum to 1).

        Raises
        ------
        InsufficientDataError
            If any sample has zero total abundance.
        """
        totals = self._abundance.sum(axis=1)
        empty = totals.index[totals <= 0]
        if len(empty) > 0:
            raise InsufficientDataError(
                f"{len(empty)} samples have zero total abundance: {empty[:5].tolist()}"
            )
        return self._abundance.div(totals, axis=0)

    # ========== Transformations ==========

    def _replace(self, **changes) -> 'SampleTable':
        kwargs = {
            'abundance': self._abundance,
            'longitude': self._longitude,
            'latitude': self._latitude,
            'taxonomy': self._taxonomy,
            'metadata': self._metadata,
            'trait': self._trait,
        }
        kwargs.update(changes)
        return SampleTable(**kwargs)

    def subset(self, sample_ids: Union[List[str], pd.Index]) -> 'SampleTable':
        """
        Create new SampleTable with a subset of samples.

        Parameters
        ----------
        sample_ids : list or Index
            Sample IDs to keep, in the order given.

        Returns
        -------
        SampleTable
        """
        indices = self._get_sample_indices(sample_ids)
        if len(indices) == 0:
            raise InsufficientDataError("No samples selected")
        return self._replace(
            abundance=self._abundance.iloc[indices],
            longitude=self._longitude[indices],
            latitude=self._latitude[indices],
            metadata=self._metadata.iloc[indices],
            trait=None if self._trait is None else self._trait.iloc[indices],
        )

    def with_trait(self, values, name: str = 'trait') -> 'SampleTable':
        """Return a new table carrying ``values`` as its trait."""
        values = np.asarray(values, dtype=np.float64)
        if values.shape != (self.n_samples,):
            raise MalformedInputError(
                f"Trait has shape {values.shape}, expected ({self.n_samples},)"
            )
        if not np.all(np.isfinite(values)):
            raise MalformedInputError(f"Trait '{name}' contains non-finite values")
        return self._replace(
            trait=pd.Series(values, index=self._sample_index, name=name)
        )

    def collapse_taxa(self, rank: str = 'genus') -> 'SampleTable':
        """
        Sum abundances of taxa sharing a label at ``rank``.

        Taxa without a label at that rank are pooled as 'Unassigned'.
        The new taxon IDs are the rank labels.
        """
        if rank not in self._taxonomy.columns:
            raise ColumnNotFoundError(rank, 'taxonomy')

        labels = self._taxonomy[rank].where(self._taxonomy[rank].notna()
                                            & (self._taxonomy[rank] != ''),
                                            UNASSIGNED)
        collapsed = self._abundance.T.groupby(labels.values, sort=True).sum().T

        rank_pos = list(self._taxonomy.columns).index(rank)
        keep_ranks = list(self._taxonomy.columns[:rank_pos + 1])
        taxonomy = self._taxonomy[keep_ranks].copy()
        taxonomy[rank] = labels.values
        taxonomy = taxonomy.groupby(rank, sort=True).first()
        taxonomy[rank] = taxonomy.index

        return self._replace(abundance=collapsed, taxonomy=taxonomy)

    # ========== Summary ==========

    def summary(self) -> dict:
        """Summary statistics of the table."""
        totals = self._abundance.sum(axis=1)
        n_cells = self._abundance.size
        sparsity = 1 - np.count_nonzero(self._abundance.values) / n_cells if n_cells else 0.0
        return {
            'n_samples': self.n_samples,
            'n_taxa': self.n_taxa,
            'trait': self.trait_name,
            'min_library_size': float(totals.min()) if self.n_samples else 0.0,
            'max_library_size': float(totals.max()) if self.n_samples else 0.0,
            'sparsity': sparsity,
            'longitude_range': (float(self._longitude.min()), float(self._longitude.max()))
            if self.n_samples else None,
            'latitude_range': (float(self._latitude.min()), float(self._latitude.max()))
            if self.n_samples else None,
            'metadata_columns': list(self._metadata.columns),
        }

    def __repr__(self) -> str:
        return (f"SampleTable\n"
                f"  Samples: {self.n_samples:,}\n"
                f"  Taxa:    {self.n_taxa:,}\n"
                f"  Trait:   {self.trait_name}")

    def __len__(self) -> int:
        return self.n_samples
