"""
loaders.py - Read abundance tables and sample metadata into a SampleTable

Supports BIOM files (via biom-format) and classic tab-separated OTU
tables, plus tab/comma separated metadata keyed by sample ID.
"""
import logging
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .config import (
    ColumnNotFoundError,
    InsufficientDataError,
    LoaderConfig,
    MalformedInputError,
    SampleIDMismatchError,
)
from .core import RANKS, SampleTable

logger = logging.getLogger(__name__)

RANK_PREFIXES = {
    'k': 'kingdom', 'd': 'kingdom', 'p': 'phylum', 'c': 'class',
    'o': 'order', 'f': 'family', 'g': 'genus', 's': 'species',
}


def parse_lineage(lineage) -> Dict[str, Optional[str]]:
    """
    Parse a taxonomic lineage into rank labels.

    Accepts a ';'-joined string or a list. Prefixed labels
    ('k__Bacteria', 'g__Bradyrhizobium') are placed by prefix; unprefixed
    labels are placed by position. Empty labels ('g__') become None.

    Examples
    --------
    >>> parse_lineage('k__Bacteria; p__Proteobacteria; g__Bradyrhizobium')['genus']
    'Bradyrhizobium'
    """
    ranks = dict.fromkeys(RANKS)
    if lineage is None or (isinstance(lineage, float) and np.isnan(lineage)):
        return ranks

    parts = lineage.split(';') if isinstance(lineage, str) else list(lineage)
    for pos, part in enumerate(parts):
        part = str(part).strip()
        if len(part) >= 3 and part[1:3] == '__' and part[0].lower() in RANK_PREFIXES:
            rank = RANK_PREFIXES[part[0].lower()]
            label = part[3:].strip()
        elif pos < len(RANKS):
            rank = RANKS[pos]
            label = part
        else:
            continue
        ranks[rank] = label or None
    return ranks


def _taxonomy_frame(taxon_ids: Sequence[str], lineages: Iterable) -> pd.DataFrame:
    rows = [parse_lineage(lin) for lin in lineages]
    return pd.DataFrame(rows, index=pd.Index(taxon_ids, name='taxon'),
                        columns=list(RANKS))


def load_biom(path: str | Path) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Load a BIOM table.

    Parameters
    ----------
    path : str or Path
        BIOM file (JSON or HDF5).

    Returns
    -------
    abundance : pd.DataFrame
        Samples × taxa.
    taxonomy : pd.DataFrame
        Taxa × ranks, parsed from the 'taxonomy' observation metadata.
    """
    import biom

    table = biom.load_table(str(path))
    abundance = table.to_dataframe(dense=True).T.astype(np.float64)
    abundance.index = abundance.index.astype(str)
    abundance.columns = abundance.columns.astype(str)

    obs_ids = table.ids(axis='observation')
    obs_meta = table.metadata(axis='observation')
    if obs_meta is None:
        lineages = [None] * len(obs_ids)
    else:
        lineages = [(m or {}).get('taxonomy') for m in obs_meta]

    logger.info(f"Loaded BIOM table {path}: {abundance.shape[0]} samples, "
                f"{abundance.shape[1]} taxa")
    return abundance, _taxonomy_frame(abundance.columns, lineages)


def load_abundance_tsv(path: str | Path) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Load a tab-separated OTU table (taxa as rows, samples as columns).

    A leading '# Constructed from biom file' comment line and a trailing
    'taxonomy' column are both optional.

    Returns
    -------
    abundance : pd.DataFrame
        Samples × taxa.
    taxonomy : pd.DataFrame
        Taxa × ranks.
    """
    with open(path) as fh:
        first = fh.readline()
    skiprows = 1 if first.startswith('# Constructed') else 0

    raw = pd.read_csv(path, sep='\t', skiprows=skiprows, index_col=0, dtype=str)
    raw.index = raw.index.astype(str).str.strip()

    tax_cols = [c for c in raw.columns if c.strip().lower() == 'taxonomy']
    lineages = raw[tax_cols[0]].tolist() if tax_cols else [None] * len(raw)
    raw = raw.drop(columns=tax_cols)

    numeric = raw.apply(pd.to_numeric, errors='coerce')
    bad = numeric.isna().to_numpy()
    if bad.any():
        row, col = np.argwhere(bad)[0]
        taxon, sample = raw.index[row], raw.columns[col]
        raise MalformedInputError(
            f"Non-numeric abundance for taxon '{taxon}' in sample '{sample}': "
            f"{raw.loc[taxon, sample]!r}"
        )

    abundance = numeric.T.astype(np.float64)
    abundance.index = abundance.index.astype(str)
    logger.info(f"Loaded abundance table {path}: {abundance.shape[0]} samples, "
                f"{abundance.shape[1]} taxa")
    return abundance, _taxonomy_frame(abundance.columns, lineages)


def load_abundance_table(path: str | Path) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Load a BIOM or tab-separated abundance table, chosen by file suffix."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Abundance table not found: {path}")
    if path.suffix.lower() == '.biom':
        return load_biom(path)
    return load_abundance_tsv(path)


def load_metadata(path: str | Path, config: Optional[LoaderConfig] = None) -> pd.DataFrame:
    """
    Load sample metadata indexed by ``config.sample_id_col``.

    Files ending in '.csv' are comma separated; everything else is
    read as tab separated.
    """
    config = config or LoaderConfig()
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Metadata table not found: {path}")

    sep = ',' if path.suffix.lower() == '.csv' else '\t'
    meta = pd.read_csv(path, sep=sep, dtype={config.sample_id_col: str})
    if config.sample_id_col not in meta.columns:
        raise ColumnNotFoundError(config.sample_id_col, str(path))

    meta = meta.set_index(config.sample_id_col)
    meta.index = meta.index.astype(str).str.strip()
    if not meta.index.is_unique:
        dup = meta.index[meta.index.duplicated()].unique().tolist()
        raise MalformedInputError(f"Duplicate sample IDs in metadata: {dup[:5]}")

    logger.info(f"Loaded metadata {path}: {len(meta)} samples, "
                f"{meta.shape[1]} columns")
    return meta


def filter_by_keywords(metadata: pd.DataFrame,
                       columns: Sequence[str],
                       keywords: Sequence[str]) -> pd.Series:
    """
    Select samples whose descriptive metadata mention any keyword.

    A sample qualifies if any of ``columns`` contains any of ``keywords``
    as a case-sensitive substring. Missing values never match.

    Returns
    -------
    pd.Series
        Boolean mask aligned to ``metadata.index``.
    """
    present = [c for c in columns if c in metadata.columns]
    missing = [c for c in columns if c not in metadata.columns]
    if missing:
        logger.warning(f"Keyword columns not in metadata, skipped: {missing}")
    if not present:
        raise MalformedInputError(
            f"None of the keyword columns {list(columns)} exist in metadata"
        )

    mask = pd.Series(False, index=metadata.index)
    for col in present:
        values = metadata[col].astype('string')
        for kw in keywords:
            mask |= values.str.contains(kw, case=True, regex=False).fillna(False).astype(bool)
    return mask


class SampleTableValidator:
    """Handles validation when joining abundance and metadata tables."""

    def __init__(self, config: LoaderConfig):
        self.config = config

    def validate_columns(self, df: pd.DataFrame, required_cols: list[str],
                         df_name: str) -> None:
        """Validate that required columns exist."""
        for col in required_cols:
            if col not in df.columns:
                raise ColumnNotFoundError(col, df_name)

    def validate_abundance(self, abundance: pd.DataFrame) -> None:
        """Abundances must be finite, numeric and non-negative."""
        non_numeric = [c for c in abundance.columns
                       if not pd.api.types.is_numeric_dtype(abundance[c])]
        if non_numeric:
            raise MalformedInputError(
                f"Non-numeric abundance for taxa: {non_numeric[:5]}"
            )
        values = abundance.to_numpy(dtype=np.float64)
        if not np.all(np.isfinite(values)):
            row, col = np.argwhere(~np.isfinite(values))[0]
            raise MalformedInputError(
                f"Missing or non-finite abundance for taxon '{abundance.columns[col]}' "
                f"in sample '{abundance.index[row]}'"
            )
        if (values < 0).any():
            row, col = np.argwhere(values < 0)[0]
            raise MalformedInputError(
                f"Negative abundance for taxon '{abundance.columns[col]}' "
                f"in sample '{abundance.index[row]}'"
            )

    def validate_sample_ids(self, abundance_ids: pd.Index,
                            metadata_ids: pd.Index) -> pd.Index:
        """
        Check sample ID consistency between the two tables.

        Returns the shared IDs in abundance-table order.
        """
        meta_set = set(metadata_ids)
        abund_set = set(abundance_ids)

        no_meta = [s for s in abundance_ids if s not in meta_set]
        if no_meta:
            self._handle_mismatch(no_meta, "abundance table", "metadata")

        no_abund = [s for s in metadata_ids if s not in abund_set]
        if no_abund:
            self._handle_mismatch(no_abund, "metadata", "abundance table")

        return pd.Index([s for s in abundance_ids if s in meta_set], name='sample_id')

    def _handle_mismatch(self, ids: list, source: str, target: str) -> None:
        """Handle sample ID mismatches."""
        if self.config.strict_validation:
            raise SampleIDMismatchError(len(ids), source, target, examples=ids[:3])
        logger.warning(f"{len(ids)} samples in {source} are not in {target}; "
                       f"they are ignored")

    def validate_coordinates(self, metadata: pd.DataFrame) -> Tuple[np.ndarray, np.ndarray]:
        """
        Extract longitude/latitude, rejecting missing or out-of-range values.

        Missing coordinates are never defaulted.
        """
        lon_col, lat_col = self.config.get_coordinate_columns()
        lon = pd.to_numeric(metadata[lon_col], errors='coerce')
        lat = pd.to_numeric(metadata[lat_col], errors='coerce')

        bad = ~(np.isfinite(lon) & np.isfinite(lat))
        if bad.any():
            ids = metadata.index[bad.values].tolist()
            raise MalformedInputError(
                f"{len(ids)} samples have missing or non-numeric coordinates: {ids[:5]}"
            )

        out_lon = (lon < -180) | (lon > 180)
        out_lat = (lat < -90) | (lat > 90)
        if out_lon.any() or out_lat.any():
            ids = metadata.index[(out_lon | out_lat).values].tolist()
            raise MalformedInputError(
                f"{len(ids)} samples have coordinates outside WGS84 range: {ids[:5]}"
            )
        return lon.to_numpy(np.float64), lat.to_numpy(np.float64)


def build_sample_table(abundance: pd.DataFrame,
                       metadata: pd.DataFrame,
                       taxonomy: Optional[pd.DataFrame] = None,
                       config: Optional[LoaderConfig] = None,
                       apply_keyword_filter: bool = True) -> SampleTable:
    """
    Validate and join abundance and metadata into a SampleTable.

    Steps: column checks, abundance checks, sample ID matching,
    keyword selection, coordinate checks, empty-sample handling.

    Parameters
    ----------
    abundance : pd.DataFrame
        Samples × taxa.
    metadata : pd.DataFrame
        Indexed by sample ID, with longitude/latitude columns.
    taxonomy : pd.DataFrame, optional
        Taxa × ranks.
    config : LoaderConfig, optional
    apply_keyword_filter : bool
        If True and ``config.keywords`` is non-empty, keep only matching samples.

    Returns
    -------
    SampleTable

    Raises
    ------
    SampleIDMismatchError
        With the default ``config.strict_validation=True``, when abundance
        and metadata sample IDs differ. IDs are matched *before* the keyword
        filter, so a mapping file listing extra samples or studies (common
        for EMP-style mapping files) fails here even if the filter would
        drop them. Set ``strict_validation=False`` to warn and keep the
        shared IDs instead.
    """
    config = config or LoaderConfig()
    validator = SampleTableValidator(config)

    abundance = abundance.copy()
    abundance.index = abundance.index.astype(str)
    metadata = metadata.copy()
    metadata.index = metadata.index.astype(str)

    validator.validate_columns(metadata, list(config.get_coordinate_columns()), 'metadata')
    validator.validate_abundance(abundance)
    shared = validator.validate_sample_ids(abundance.index, metadata.index)

    if apply_keyword_filter and config.keywords:
        mask = filter_by_keywords(metadata.loc[shared], config.keyword_cols, config.keywords)
        logger.info(f"Keyword filter {list(config.keywords)}: "
                    f"{int(mask.sum())}/{len(shared)} samples kept")
        shared = shared[mask.values]

    if len(shared) == 0:
        raise InsufficientDataError("No samples left after joining and filtering")

    abundance = abundance.loc[shared]
    metadata = metadata.loc[shared]

    if config.drop_empty_samples:
        totals = abundance.sum(axis=1)
        empty = totals.index[totals <= 0]
        if len(empty) > 0:
            logger.warning(f"Dropping {len(empty)} samples with zero total "
                           f"abundance: {empty[:5].tolist()}")
            abundance = abundance.drop(index=empty)
            metadata = metadata.drop(index=empty)
        if len(abundance) == 0:
            raise InsufficientDataError("All selected samples have zero abundance")

    lon, lat = validator.validate_coordinates(metadata)

    present = abundance.columns[abundance.sum(axis=0) > 0]
    if len(present) < abundance.shape[1]:
        logger.debug(f"Dropping {abundance.shape[1] - len(present)} taxa absent "
                     f"from the selected samples")
        abundance = abundance[present]

    table = SampleTable(
        abundance=abundance,
        longitude=lon,
        latitude=lat,
        taxonomy=taxonomy,
        metadata=metadata,
    )
    logger.info(f"Built sample table: {table.n_samples} samples, {table.n_taxa} taxa")
    return table


def load_samples(abundance_path: str | Path,
                 metadata_path: str | Path,
                 config: Optional[LoaderConfig] = None) -> SampleTable:
    """
    Load, filter and join an abundance table and its metadata.

    Examples
    --------
    >>> table = load_samples('otu_table.biom', 'mapping.tsv')
    >>> table.n_samples
    """
    config = config or LoaderConfig()
    abundance, taxonomy = load_abundance_table(abundance_path)
    metadata = load_metadata(metadata_path, config)
    return build_sample_table(abundance, metadata, taxonomy=taxonomy, config=config)
