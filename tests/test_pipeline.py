"""
test_pipeline.py - Tests for export, the end-to-end pipeline, figures and the CLI

How to run:
    pytest tests/test_pipeline.py -v
"""

import json

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
import rasterio
from click.testing import CliRunner

from diazomap.cli import cli
from diazomap.data.config import AnalysisConfig, InsufficientDataError, LoaderConfig
from diazomap.data.core import SampleTable
from diazomap.data.export import (
    export_to_csv_bundle,
    hotspots_to_geodataframe,
    write_hotspot_layer,
    write_surface_geotiff,
)
from diazomap.pipeline import (
    PipelineResult,
    resolve_rank,
    run_analysis,
    run_pipeline,
    write_outputs,
)
from diazomap.visualization.plots import (
    plot_diversity_by_group,
    plot_hotspots,
    plot_ordination,
    plot_surface,
    plot_top_taxa,
)


# ===========================================================================
# SECTION 1 - Export
#
# We check:
#   (a) the GeoTIFF has the grid's geometry and no-data value
#   (b) the hotspot layer has one point per sample
#   (c) the CSV bundle contains every result table
# ===========================================================================


class TestExport:

    # -----------------------------------------------------------------------
    # (a) Raster
    # -----------------------------------------------------------------------

    def test_geotiff_roundtrip_geometry(self, pipeline_result, tmp_path):
        surface = pipeline_result.surface
        path = write_surface_geotiff(surface, tmp_path / "surface.tif")

        with rasterio.open(path) as src:
            data = src.read(1)
            assert src.crs.to_string() == "EPSG:4326"
            assert (src.height, src.width) == surface.grid.shape
            assert src.transform.c == pytest.approx(surface.grid.west)
            assert src.transform.f == pytest.approx(surface.grid.north)
            assert src.transform.a == pytest.approx(surface.grid.cell_size)
            assert src.nodata == -9999.0
            assert float(src.tags()["power"]) == surface.power

        np.testing.assert_allclose(data[surface.mask], surface.values[surface.mask], rtol=1e-6)
        assert np.all(data[~surface.mask] == -9999.0)

    # -----------------------------------------------------------------------
    # (b) Vector
    # -----------------------------------------------------------------------

    def test_geodataframe(self, pipeline_result):
        gdf = hotspots_to_geodataframe(pipeline_result.table, pipeline_result.hotspots)

        assert len(gdf) == 12
        assert gdf.crs.to_string() == "EPSG:4326"
        assert {"gi", "label", "nif_potential"} <= set(gdf.columns)
        assert gdf.index.name == "sample_id"
        assert gdf.loc["A0", "geometry"].x == pytest.approx(10.0)
        assert gdf.loc["B0", "label"] == "cold"

    def test_geojson_layer(self, pipeline_result, tmp_path):
        path = write_hotspot_layer(pipeline_result.table, pipeline_result.hotspots,
                                   tmp_path / "hotspots.geojson")
        layer = gpd.read_file(path)

        assert len(layer) == 12
        assert sorted(layer.loc[layer["label"] == "hot", "sample_id"]) == [
            f"A{i}" for i in range(6)
        ]

    def test_unsupported_vector_format(self, pipeline_result, tmp_path):
        with pytest.raises(ValueError):
            write_hotspot_layer(pipeline_result.table, pipeline_result.hotspots,
                                tmp_path / "hotspots.txt")

    # -----------------------------------------------------------------------
    # (c) CSV bundle
    # -----------------------------------------------------------------------

    def test_csv_bundle(self, pipeline_result, tmp_path):
        written = export_to_csv_bundle(pipeline_result, tmp_path / "out")

        assert set(written) == {
            "hotspots", "top_taxa_hot", "top_taxa_cold", "diversity",
            "diversity_test", "ordination", "surface", "config",
        }
        assert all(p.exists() for p in written.values())

        hot = pd.read_csv(written["hotspots"], index_col=0)
        assert list(hot.columns) == ["longitude", "latitude", "gi", "label", "nif_potential"]

        test = pd.read_csv(written["diversity_test"])
        assert {"pvalue", "alpha", "significant"} <= set(test.columns)

        ordination = pd.read_csv(written["ordination"], index_col=0)
        assert {"NMDS1", "NMDS2", "group", "stress"} <= set(ordination.columns)

        with open(written["config"]) as fh:
            assert json.load(fh)["knn_k"] == 4


# ===========================================================================
# SECTION 2 - Pipeline
#
# We check:
#   (a) an analysis on the two-cluster table produces every stage
#   (b) the trait source (existing, metadata column) is honored
#   (c) a failing stage reports the stages that finished
#   (d) the full run from files
# ===========================================================================


class TestPipeline:

    # -----------------------------------------------------------------------
    # (a) run_analysis
    # -----------------------------------------------------------------------

    def test_summary(self, pipeline_result):
        assert isinstance(pipeline_result, PipelineResult)
        summary = pipeline_result.summary()

        assert summary["n_samples"] == 12
        assert summary["n_hot"] == 6
        assert summary["n_cold"] == 6
        assert 0 < summary["surface_coverage"] <= 1
        assert 0 <= summary["shannon_pvalue"] <= 1

    def test_ordination_covers_hot_and_cold(self, pipeline_result):
        assert len(pipeline_result.ordination.coordinates) == 12

    # -----------------------------------------------------------------------
    # (b) Trait source
    # -----------------------------------------------------------------------

    def test_trait_from_metadata_column(self, cluster_frames):
        abundance, metadata, taxonomy = cluster_frames
        table = SampleTable(abundance, metadata["longitude_deg"].values,
                            metadata["latitude_deg"].values, taxonomy=taxonomy,
                            metadata=metadata)
        config = AnalysisConfig(knn_k=4, grid_n_cols=20, trait_column="nif_potential")
        result = run_analysis(table, config)

        assert result.table.trait_name == "nif_potential"
        assert sorted(result.hotspots.hot_ids) == [f"A{i}" for i in range(6)]

    def test_resolve_rank(self, two_cluster_table, cluster_frames):
        assert resolve_rank(two_cluster_table, "genus") == "genus"
        assert resolve_rank(two_cluster_table, None) is None
        assert resolve_rank(two_cluster_table, "strain") is None

        abundance, metadata, _ = cluster_frames
        bare = SampleTable(abundance, metadata["longitude_deg"].values,
                           metadata["latitude_deg"].values)
        assert resolve_rank(bare, "genus") is None

    # -----------------------------------------------------------------------
    # (c) Partial results
    # -----------------------------------------------------------------------

    def test_partial_results_on_failure(self, tsv_inputs):
        config = AnalysisConfig(knn_k=4, grid_n_cols=20, trait_column="flat_trait")
        with pytest.raises(InsufficientDataError) as exc:
            run_pipeline(*tsv_inputs, config=config)

        partial = exc.value.partial_results
        assert "table" in partial
        assert "surface" in partial
        assert "hotspots" not in partial

    # -----------------------------------------------------------------------
    # (d) From files
    # -----------------------------------------------------------------------

    def test_run_pipeline_from_files(self, tsv_inputs):
        config = AnalysisConfig(knn_k=4, grid_n_cols=20, trait_column="nif_potential")
        result = run_pipeline(*tsv_inputs, config=config)

        assert result.table.n_samples == 12
        assert sorted(result.hotspots.cold_ids) == [f"B{i}" for i in range(6)]
        assert result.comparison.top_hot["taxon"].iloc[0] == "Bradyrhizobium"

    def test_write_outputs(self, pipeline_result, tmp_path):
        written = write_outputs(pipeline_result, tmp_path / "results")

        for name in ("surface.tif", "hotspots.gpkg", "surface.png", "hotspots.png",
                     "top_taxa.png", "diversity.png", "ordination.png", "hotspots.csv"):
            assert (tmp_path / "results" / name).exists(), name
        assert written["surface_raster"].name == "surface.tif"

    def test_write_outputs_without_plots(self, pipeline_result, tmp_path):
        write_outputs(pipeline_result, tmp_path, plots=False)
        assert not list(tmp_path.glob("*.png"))


# ===========================================================================
# SECTION 3 - Figures
# ===========================================================================


class TestPlots:

    def test_surface(self, pipeline_result, tmp_path):
        path = tmp_path / "s.png"
        fig = plot_surface(pipeline_result.surface, pipeline_result.table,
                           save_path=str(path), dpi=50, show=False)
        assert path.exists()
        assert fig.axes

    def test_hotspots_by_score(self, pipeline_result):
        fig = plot_hotspots(pipeline_result.table, pipeline_result.hotspots,
                            show_scores=True, show=False)
        assert len(fig.axes) == 2  # map + colorbar

    def test_top_taxa_panels(self, pipeline_result):
        fig = plot_top_taxa(pipeline_result.comparison, n_taxa=3, show=False)
        assert [ax.get_title() for ax in fig.axes] == ["hot (genus)", "cold (genus)"]

    def test_diversity(self, pipeline_result):
        fig = plot_diversity_by_group(pipeline_result.comparison, show=False)
        assert "Shannon" in fig.axes[0].get_title()

    def test_ordination_stress_label(self, pipeline_result):
        fig = plot_ordination(pipeline_result.ordination, show=False)
        texts = [t.get_text() for t in fig.axes[0].texts]
        assert any(t.startswith("stress = ") for t in texts)


# ===========================================================================
# SECTION 4 - Command line
# ===========================================================================


class TestCLI:

    def test_show_config(self):
        result = CliRunner().invoke(cli, ["show-config"])
        assert result.exit_code == 0
        config = json.loads(result.output)
        assert config["knn_k"] == 8
        assert config["loader"]["keywords"] == ["soil", "sediment"]

    def test_show_config_from_file(self, tmp_path):
        path = tmp_path / "params.json"
        path.write_text(json.dumps({"knn_k": 5, "loader": {"keywords": ["peat"]}}))
        result = CliRunner().invoke(cli, ["show-config", "--config", str(path)])
        assert result.exit_code == 0
        config = json.loads(result.output)
        assert config["knn_k"] == 5
        assert config["loader"]["keywords"] == ["peat"]

    def test_run(self, tsv_inputs, tmp_path):
        out = tmp_path / "cli_out"
        abundance, metadata = tsv_inputs
        result = CliRunner().invoke(cli, [
            "run", str(abundance), str(metadata), "--out-dir", str(out),
            "--trait-column", "nif_potential", "--k", "4", "--no-plots",
        ])

        assert result.exit_code == 0, result.output
        assert "6 hot, 6 cold" in result.output
        assert (out / "surface.tif").exists()
        assert (out / "hotspots.gpkg").exists()
        assert not list(out.glob("*.png"))

    def test_run_keyword_override(self, tsv_inputs, tmp_path):
        abundance, metadata = tsv_inputs
        result = CliRunner().invoke(cli, [
            "run", str(abundance), str(metadata), "-o", str(tmp_path),
            "--keyword", "glacier", "--no-plots",
        ])
        assert result.exit_code == 1
        assert "No samples left" in result.output

    def test_invalid_parameter(self, tsv_inputs, tmp_path):
        abundance, metadata = tsv_inputs
        result = CliRunner().invoke(cli, [
            "run", str(abundance), str(metadata), "-o", str(tmp_path), "--k", "0",
        ])
        assert result.exit_code == 2
        assert "knn_k" in result.output

    def test_analysis_failure_exit_code(self, tsv_inputs, tmp_path):
        abundance, metadata = tsv_inputs
        result = CliRunner().invoke(cli, [
            "run", str(abundance), str(metadata), "-o", str(tmp_path),
            "--trait-column", "flat_trait", "--k", "4", "--no-plots",
        ])
        assert result.exit_code == 1
        assert "identical" in result.output

    def test_missing_input(self, tmp_path):
        result = CliRunner().invoke(cli, [
            "run", str(tmp_path / "nope.biom"), str(tmp_path / "nope.tsv"), "-o", str(tmp_path),
        ])
        assert result.exit_code == 2


def test_loader_config_keywords_are_tuples():
    """Keyword lists from JSON are stored as tuples."""
    config = AnalysisConfig.from_dict({"loader": {"keywords": ["soil"]}})
    assert config.loader.keywords == ("soil",)
    assert isinstance(config.loader, LoaderConfig)
