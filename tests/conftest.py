"""
conftest.py - Shared test fixtures for diazomap

pytest reads this file before running any test, and every fixture
defined here is injected into tests that ask for it by name:

    @pytest.fixture
    def two_cluster_table():
        return SampleTable(...)

    def test_something(two_cluster_table):   ← pytest injects the table
        assert two_cluster_table.n_samples == 12

The central dataset is 12 samples in two tight spatial clusters:

  - cluster A (around lon 10.0) carries a trait of ~10 and is dominated
    by Bradyrhizobium
  - cluster B (around lon 12.0) carries a trait of ~0 and is dominated
    by Nitrospira

With k=4 every sample's neighbors fall inside its own cluster, so
Getis-Ord Gi* labels all of A as hot and all of B as cold.
"""

import matplotlib

matplotlib.use("Agg")  # no display during tests

import numpy as np
import pandas as pd
import pytest

from diazomap.data.config import AnalysisConfig
from diazomap.data.core import SampleTable
from diazomap.data.loaders import parse_lineage

# ===========================================================================
# Constants - the shape of the fake dataset
# ===========================================================================

N_PER_CLUSTER = 6
TAXA = [f"otu{i}" for i in range(1, 9)]

LINEAGES = {
    "otu1": "k__Bacteria; p__Proteobacteria; c__Alphaproteobacteria; o__Rhizobiales; "
            "f__Bradyrhizobiaceae; g__Bradyrhizobium",
    "otu2": "k__Bacteria; p__Proteobacteria; c__Alphaproteobacteria; o__Rhizobiales; "
            "f__Bradyrhizobiaceae; g__Bradyrhizobium",
    "otu3": "k__Bacteria; p__Proteobacteria; c__Gammaproteobacteria; o__Pseudomonadales; "
            "f__Pseudomonadaceae; g__Azotobacter",
    "otu4": "k__Bacteria; p__Proteobacteria; c__Alphaproteobacteria; o__Rhizobiales; "
            "f__Rhizobiaceae; g__Rhizobium",
    "otu5": "k__Bacteria; p__Nitrospirae; c__Nitrospira; o__Nitrospirales; "
            "f__Nitrospiraceae; g__Nitrospira",
    "otu6": "k__Bacteria; p__Firmicutes; c__Bacilli; o__Bacillales; "
            "f__Bacillaceae; g__Bacillus",
    "otu7": "k__Bacteria; p__Proteobacteria; c__Gammaproteobacteria; o__Pseudomonadales; "
            "f__Pseudomonadaceae; g__Pseudomonas",
    "otu8": "k__Bacteria; p__Firmicutes",  # no genus → pooled as Unassigned
}

# Base counts per taxon (otu1..otu8)
HOT_COUNTS = np.array([40, 20, 30, 5, 2, 2, 10, 5])
COLD_COUNTS = np.array([2, 1, 3, 10, 40, 30, 10, 5])

HOT_TRAIT = [10.0, 10.1, 9.9, 10.2, 9.8, 10.05]
COLD_TRAIT = [0.0, 0.1, -0.1, 0.2, -0.2, 0.05]


def _cluster_offsets():
    """Six points on a 3 × 2 lattice with 0.01° spacing."""
    dx = 0.01 * np.array([0, 1, 2, 0, 1, 2])
    dy = 0.01 * np.array([0, 0, 0, 1, 1, 1])
    return dx, dy


def _counts(base: np.ndarray, n: int) -> np.ndarray:
    """Deterministic per-sample variation around the base counts."""
    return np.array([base + np.arange(len(base)) * (i % 3) + i // 3 for i in range(n)],
                    dtype=float)


# ===========================================================================
# Fixture 1: raw frames (abundance, metadata, taxonomy)
# ===========================================================================


@pytest.fixture
def cluster_frames():
    """
    The raw pieces of the two-cluster dataset.

    Returns (abundance, metadata, taxonomy):
      abundance : 12 samples × 8 taxa
      metadata  : '#SampleID'-free frame indexed by sample ID, with
                  longitude_deg / latitude_deg / env_material / nif_potential
      taxonomy  : 8 taxa × ranks
    """
    dx, dy = _cluster_offsets()
    hot_ids = [f"A{i}" for i in range(N_PER_CLUSTER)]
    cold_ids = [f"B{i}" for i in range(N_PER_CLUSTER)]
    ids = hot_ids + cold_ids

    abundance = pd.DataFrame(
        np.vstack([_counts(HOT_COUNTS, N_PER_CLUSTER), _counts(COLD_COUNTS, N_PER_CLUSTER)]),
        index=ids,
        columns=TAXA,
    )

    metadata = pd.DataFrame(
        {
            "longitude_deg": np.concatenate([10.0 + dx, 12.0 + dx]),
            "latitude_deg": np.concatenate([50.0 + dy, 50.0 + dy]),
            "env_material": ["soil"] * N_PER_CLUSTER + ["sediment"] * N_PER_CLUSTER,
            "nif_potential": HOT_TRAIT + COLD_TRAIT,
        },
        index=ids,
    )

    taxonomy = pd.DataFrame([parse_lineage(LINEAGES[t]) for t in TAXA], index=TAXA)

    return abundance, metadata, taxonomy


# ===========================================================================
# Fixture 2: SampleTable with the designed trait attached
# ===========================================================================


@pytest.fixture
def two_cluster_table(cluster_frames):
    """
    12-sample SampleTable carrying the 'nif_potential' trait.

    Samples A0..A5 are the high cluster, B0..B5 the low cluster.
    """
    abundance, metadata, taxonomy = cluster_frames
    table = SampleTable(
        abundance=abundance,
        longitude=metadata["longitude_deg"].values,
        latitude=metadata["latitude_deg"].values,
        taxonomy=taxonomy,
        metadata=metadata,
    )
    return table.with_trait(metadata["nif_potential"].values, name="nif_potential")


@pytest.fixture
def hot_ids():
    return [f"A{i}" for i in range(N_PER_CLUSTER)]


@pytest.fixture
def cold_ids():
    return [f"B{i}" for i in range(N_PER_CLUSTER)]


# ===========================================================================
# Fixture 3: input files on disk (TSV abundance + TSV metadata)
# ===========================================================================


@pytest.fixture
def tsv_inputs(tmp_path, cluster_frames):
    """
    Writes the dataset as a QIIME-style OTU table and a mapping file.

    Two extra 'water' samples are included in both files; the default
    keyword filter ('soil', 'sediment') removes them again. A constant
    'flat_trait' column is included for failure-path tests.

    Returns (abundance_path, metadata_path).
    """
    abundance, metadata, _ = cluster_frames

    water = pd.DataFrame(
        [[5, 5, 5, 5, 5, 5, 5, 5], [1, 2, 3, 4, 5, 6, 7, 8]],
        index=["W0", "W1"],
        columns=TAXA,
        dtype=float,
    )
    abundance = pd.concat([abundance, water])

    # --- OTU table: taxa as rows, samples as columns, taxonomy last ---
    otu = abundance.T.astype(int)
    otu["taxonomy"] = [LINEAGES[t] for t in otu.index]
    otu.index.name = "#OTU ID"
    abundance_path = tmp_path / "otu_table.tsv"
    with open(abundance_path, "w") as fh:
        fh.write("# Constructed from biom file\n")
        otu.to_csv(fh, sep="\t")

    # --- Mapping file ---
    meta = metadata.copy()
    meta.loc["W0"] = [11.0, 48.0, "water", 3.0]
    meta.loc["W1"] = [11.5, 48.5, "water", 4.0]
    meta["description"] = ["agricultural field"] * 6 + ["lake bottom"] * 6 + [np.nan, np.nan]
    meta["title"] = "survey"
    meta["flat_trait"] = 1.0
    meta.index.name = "#SampleID"
    metadata_path = tmp_path / "mapping.tsv"
    meta.to_csv(metadata_path, sep="\t")

    return abundance_path, metadata_path


# ===========================================================================
# Fixture 4: analysis config and a finished analysis run
# ===========================================================================


@pytest.fixture
def cluster_config():
    """Config suited to the 12-sample dataset (k=4, small grid)."""
    return AnalysisConfig(knn_k=4, grid_n_cols=20, top_k=5)


@pytest.fixture
def pipeline_result(two_cluster_table, cluster_config):
    """A complete PipelineResult on the two-cluster table."""
    from diazomap.pipeline import run_analysis

    return run_analysis(two_cluster_table, config=cluster_config)


# ===========================================================================
# Fixture 5: large random point pattern
# ===========================================================================


@pytest.fixture
def random_points():
    """
    2000 uniformly scattered points with i.i.d. normal values.

    There is no spatial structure, so Gi* should flag roughly 5% of the
    points at the ±1.96 thresholds.
    """
    rng = np.random.default_rng(7)
    coords = rng.uniform(0, 100, size=(2000, 2))
    values = rng.normal(0, 1, size=2000)
    return coords, values
