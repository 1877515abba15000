"""
pipeline.py - End-to-end diazomap analysis

Runs the stages in order:

    load -> simulate trait -> IDW surface -> k-NN graph + Gi*
         -> hot/cold comparison -> Bray-Curtis + NMDS

and writes every artifact with ``write_outputs``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from diazomap.data.config import AnalysisConfig, DiazomapError
from diazomap.data.core import SampleTable
from diazomap.data.export import (
    export_to_csv_bundle,
    write_hotspot_layer,
    write_surface_geotiff,
)
from diazomap.data.loaders import load_samples
from diazomap.data.traits import simulate_trait, trait_from_metadata
from diazomap.processing.diversity import GroupComparison, compare_groups
from diazomap.processing.ordination import OrdinationResult, ordinate_samples
from diazomap.spatial.point.graph import PointSpatialGraph
from diazomap.spatial.point.interpolation import InterpolatedSurface, interpolate_trait
from diazomap.spatial.point.patterns import GiStarResult, HotspotClass, detect_hotspots

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class PipelineResult:
    """Every intermediate result of one pipeline run."""
    table: SampleTable
    surface: InterpolatedSurface
    graph: PointSpatialGraph
    hotspots: GiStarResult
    comparison: GroupComparison
    ordination: OrdinationResult
    config: AnalysisConfig

    def summary(self) -> dict:
        counts = self.hotspots.counts()
        return {
            'n_samples': self.table.n_samples,
            'n_taxa': self.table.n_taxa,
            'surface_coverage': self.surface.coverage,
            'n_hot': counts[HotspotClass.HOT],
            'n_cold': counts[HotspotClass.COLD],
            'shannon_pvalue': self.comparison.test.pvalue,
            'nmds_stress': self.ordination.stress,
        }


def resolve_rank(table: SampleTable, rank: Optional[str]) -> Optional[str]:
    """
    Rank to collapse taxa to, or None when the table carries no labels
    at that rank (e.g. a TSV without a taxonomy column).
    """
    if rank is None:
        return None
    taxonomy = table.taxonomy
    if rank not in taxonomy.columns:
        logger.warning(f"Taxonomy has no '{rank}' rank; using original taxa")
        return None
    labels = taxonomy[rank]
    if not (labels.notna() & (labels != '')).any():
        logger.warning(f"No taxa are assigned at rank '{rank}'; using original taxa")
        return None
    return rank


def run_analysis(table: SampleTable, config: Optional[AnalysisConfig] = None,
                 partial: Optional[dict] = None) -> PipelineResult:
    """
    Run every analysis stage on an already loaded SampleTable.

    Parameters
    ----------
    table : SampleTable
        Joined samples. Without a trait, one is read from
        ``config.trait_column`` or simulated.
    config : AnalysisConfig, optional
    partial : dict, optional
        Filled with each stage's result as it completes.

    Returns
    -------
    PipelineResult
    """
    config = config or AnalysisConfig()
    config.validate()
    partial = {} if partial is None else partial

    print("\n" + "=" * 60)
    print(f"diazomap analysis: {table.n_samples} samples, {table.n_taxa} taxa")
    print("=" * 60)

    if not table.has_trait and config.trait_column:
        print("\n[1/5] Reading trait from metadata...")
        table = trait_from_metadata(table, config.trait_column)
    elif not table.has_trait:
        print("\n[1/5] Simulating trait...")
        table = simulate_trait(
            table,
            seed=config.seed,
            distribution=config.trait_distribution,
            loc=config.trait_loc,
            scale=config.trait_scale,
            name=config.trait_name,
        )
    partial['table'] = table

    print("\n[2/5] Interpolating trait surface (IDW)...")
    surface = interpolate_trait(
        table,
        power=config.idw_power,
        radius=config.idw_radius,
        metric=config.distance_metric,
        cell_size=config.grid_cell_size,
        n_cols=config.grid_n_cols,
        padding=config.grid_padding,
    )
    partial['surface'] = surface

    print("\n[3/5] Detecting hot/cold spots (Getis-Ord Gi*)...")
    graph, hotspots = detect_hotspots(
        table,
        k=config.knn_k,
        metric=config.distance_metric,
        hot_threshold=config.hot_threshold,
        cold_threshold=config.cold_threshold,
    )
    partial['graph'] = graph
    partial['hotspots'] = hotspots

    rank = resolve_rank(table, config.loader.taxonomy_rank)

    print("\n[4/5] Comparing hotspot vs coldspot communities...")
    comparison = compare_groups(table, hotspots, top_k=config.top_k, rank=rank)
    partial['comparison'] = comparison

    print("\n[5/5] Ordinating hotspot and coldspot samples (NMDS)...")
    ordination = ordinate_samples(
        table,
        sample_ids=hotspots.hot_ids.append(hotspots.cold_ids),
        rank=rank,
        n_init=config.nmds_n_init,
        max_iter=config.nmds_max_iter,
        eps=config.nmds_eps,
        seed=config.seed,
    )
    partial['ordination'] = ordination

    print("\n" + "=" * 60)
    print("✓ Analysis complete")
    print("=" * 60)

    return PipelineResult(
        table=table,
        surface=surface,
        graph=graph,
        hotspots=hotspots,
        comparison=comparison,
        ordination=ordination,
        config=config,
    )


def run_pipeline(abundance_path: str | Path,
                 metadata_path: str | Path,
                 config: Optional[AnalysisConfig] = None) -> PipelineResult:
    """
    Load inputs and run the full analysis.

    On the first DiazomapError the run stops; the exception is re-raised
    with a ``partial_results`` dict holding the stages that completed.

    Examples
    --------
    >>> result = run_pipeline('otu_table.biom', 'mapping.tsv')
    >>> result.hotspots.counts()
    """
    config = config or AnalysisConfig()
    config.validate()
    partial: dict = {}

    try:
        logger.info(f"Loading {abundance_path} and {metadata_path}")
        table = load_samples(abundance_path, metadata_path, config=config.loader)
        partial['table'] = table
        return run_analysis(table, config=config, partial=partial)
    except DiazomapError as e:
        logger.error(f"Pipeline stopped after {sorted(partial) or 'no stages'}: {e}")
        e.partial_results = partial
        raise


def write_outputs(result: PipelineResult, output_dir: str | Path,
                  plots: bool = True) -> dict:
    """
    Write all artifacts of a run into ``output_dir``.

    Creates the CSV bundle, ``surface.tif``, ``hotspots.gpkg`` and, if
    ``plots`` is True, PNG figures.

    Returns
    -------
    dict
        Artifact name -> written path.
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    written = export_to_csv_bundle(result, output_path)
    written['surface_raster'] = write_surface_geotiff(
        result.surface, output_path / 'surface.tif'
    )
    written['hotspot_layer'] = write_hotspot_layer(
        result.table, result.hotspots, output_path / 'hotspots.gpkg'
    )

    if plots:
        from diazomap.visualization.plots import (
            plot_diversity_by_group,
            plot_hotspots,
            plot_ordination,
            plot_surface,
            plot_top_taxa,
        )

        figures = {
            'plot_surface': lambda p: plot_surface(result.surface, result.table,
                                                   save_path=p, show=False),
            'plot_hotspots': lambda p: plot_hotspots(result.table, result.hotspots,
                                                     save_path=p, show=False),
            'plot_top_taxa': lambda p: plot_top_taxa(result.comparison,
                                                     save_path=p, show=False),
            'plot_diversity': lambda p: plot_diversity_by_group(
                result.comparison, alpha=result.config.alpha, save_path=p, show=False),
            'plot_ordination': lambda p: plot_ordination(
                result.ordination, groups=result.comparison.diversity['group'],
                save_path=p, show=False),
        }
        for name, draw in figures.items():
            path = output_path / f"{name.replace('plot_', '')}.png"
            draw(str(path))
            written[name] = path

    logger.info(f"Wrote {len(written)} artifacts to {output_path}")
    return written
