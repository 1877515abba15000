"""
export.py - Write analysis results to flat files

- GeoTIFF raster of an interpolated surface (rasterio)
- Point vector layer of Gi* scores and labels (geopandas)
- CSV bundle of every result table
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    import geopandas as gpd

    from diazomap.data.core import SampleTable
    from diazomap.pipeline import PipelineResult
    from diazomap.spatial.point.interpolation import InterpolatedSurface
    from diazomap.spatial.point.patterns import GiStarResult

logger = logging.getLogger(__name__)

VECTOR_DRIVERS = {
    '.gpkg': 'GPKG',
    '.geojson': 'GeoJSON',
    '.json': 'GeoJSON',
    '.shp': 'ESRI Shapefile',
}


def write_surface_geotiff(surface: 'InterpolatedSurface',
                          path: str | Path,
                          crs: str = 'EPSG:4326',
                          nodata: float = -9999.0) -> Path:
    """
    Write an interpolated surface as a single-band float32 GeoTIFF.

    No-data cells are written as ``nodata`` and flagged in the file
    metadata.

    Parameters
    ----------
    surface : InterpolatedSurface
    path : str or Path
    crs : str
        Coordinate reference system of the grid, by default WGS84.
    nodata : float
        Fill value for cells without an estimate.

    Returns
    -------
    Path
    """
    import rasterio
    from rasterio.transform import from_bounds

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    grid = surface.grid
    data = np.where(surface.mask, surface.values, nodata).astype(np.float32)
    transform = from_bounds(*grid.bounds, grid.n_cols, grid.n_rows)

    with rasterio.open(
        path, 'w',
        driver='GTiff',
        height=grid.n_rows,
        width=grid.n_cols,
        count=1,
        dtype='float32',
        crs=crs,
        transform=transform,
        nodata=nodata,
    ) as dst:
        dst.write(data, 1)
        dst.update_tags(power=surface.power, radius=surface.radius,
                        metric=surface.metric, n_observations=surface.n_observations)

    logger.info(f"Wrote surface raster {path} ({grid.n_rows}x{grid.n_cols})")
    return path


def hotspots_to_geodataframe(table: 'SampleTable',
                             gi_result: 'GiStarResult',
                             crs: str = 'EPSG:4326') -> 'gpd.GeoDataFrame':
    """
    Point layer with one feature per sample: trait, Gi* score and label.

    Examples
    --------
    >>> gdf = hotspots_to_geodataframe(table, gi)
    >>> gdf.to_file('hotspots.gpkg')
    """
    try:
        import geopandas as gpd
        from shapely.geometry import Point
    except ImportError:
        raise ImportError(
            "GeoPandas required. Install with: pip install geopandas"
        )

    df = gi_result.to_dataframe()
    coords = table.get_coords(df.index, as_dataframe=True)
    df = coords.join(df)
    if table.has_trait:
        df[table.trait_name] = table.trait.reindex(df.index).values

    geometries = [Point(lon, lat) for lon, lat in zip(df['longitude'], df['latitude'])]
    gdf = gpd.GeoDataFrame(df, geometry=geometries, crs=crs)
    gdf.index.name = 'sample_id'
    return gdf


def write_hotspot_layer(table: 'SampleTable',
                        gi_result: 'GiStarResult',
                        path: str | Path,
                        crs: str = 'EPSG:4326') -> Path:
    """
    Write the Gi* point layer. Driver is chosen by suffix
    ('.gpkg', '.geojson', '.shp').
    """
    path = Path(path)
    driver = VECTOR_DRIVERS.get(path.suffix.lower())
    if driver is None:
        raise ValueError(
            f"Unsupported vector format '{path.suffix}'. "
            f"Use one of {sorted(VECTOR_DRIVERS)}"
        )
    path.parent.mkdir(parents=True, exist_ok=True)

    gdf = hotspots_to_geodataframe(table, gi_result, crs=crs).reset_index()
    gdf.to_file(path, driver=driver)

    logger.info(f"Wrote hotspot layer {path} ({len(gdf)} points, {driver})")
    return path


def export_to_csv_bundle(result: 'PipelineResult', output_dir: str | Path) -> dict:
    """
    Export every result table of a pipeline run to CSV.

    Creates:
        hotspots.csv, top_taxa_hot.csv, top_taxa_cold.csv, diversity.csv,
        diversity_test.csv, ordination.csv, surface.csv, config.json

    Returns
    -------
    dict
        Artifact name -> written path.
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)
    written = {}

    logger.info(f"Exporting CSV bundle to {output_path}")

    coords = result.table.get_coords(as_dataframe=True)
    hot = coords.join(result.hotspots.to_dataframe())
    if result.table.has_trait:
        hot[result.table.trait_name] = result.table.trait
    written['hotspots'] = output_path / 'hotspots.csv'
    hot.to_csv(written['hotspots'])

    written['top_taxa_hot'] = output_path / 'top_taxa_hot.csv'
    result.comparison.top_hot.to_csv(written['top_taxa_hot'], index=False)
    written['top_taxa_cold'] = output_path / 'top_taxa_cold.csv'
    result.comparison.top_cold.to_csv(written['top_taxa_cold'], index=False)

    written['diversity'] = output_path / 'diversity.csv'
    result.comparison.diversity.to_csv(written['diversity'])

    test = result.comparison.test.to_dict()
    test['alpha'] = result.config.alpha
    test['significant'] = result.comparison.test.is_significant(result.config.alpha)
    written['diversity_test'] = output_path / 'diversity_test.csv'
    pd.DataFrame([test]).to_csv(written['diversity_test'], index=False)

    written['ordination'] = output_path / 'ordination.csv'
    result.ordination.to_dataframe(
        groups=result.comparison.diversity['group']
    ).to_csv(written['ordination'])

    written['surface'] = output_path / 'surface.csv'
    result.surface.to_dataframe().to_csv(written['surface'], index=False)

    written['config'] = output_path / 'config.json'
    with open(written['config'], 'w') as fh:
        json.dump(result.config.to_dict(), fh, indent=2)

    logger.info(f"Exported {len(written)} files")
    return written
