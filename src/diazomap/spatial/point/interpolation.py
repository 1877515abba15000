"""
interpolation.py - Inverse Distance Weighting (IDW) onto a regular grid

Estimates a continuous surface from scattered point observations:

    estimate(c) = sum(w_i * v_i) / sum(w_i),   w_i = 1 / d(c, i) ** p

over observations within a search radius of the cell center. Cells with
no observation in range are no-data (NaN). A cell center that coincides
with an observation takes that observation's value exactly.

Grid convention
---------------
Row 0 is the northern-most row, matching GeoTIFF layout. Cell (r, c)
has its center at (west + (c + 0.5) * cell_size,
north - (r + 0.5) * cell_size).

Example
-------
>>> grid = GridSpec.from_points(lon, lat, n_cols=200)
>>> surface = idw_interpolate(lon, lat, values, grid, power=2)
>>> surface.values.shape
(n_rows, 200)
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import numpy as np
import pandas as pd

from diazomap.data.config import InsufficientDataError, MalformedInputError

from .graph import max_pairwise_distance, pairwise_distances

if TYPE_CHECKING:
    from diazomap.data.core import SampleTable


@dataclass(frozen=True)
class GridSpec:
    """
    Regular grid geometry.

    Attributes
    ----------
    west : float
        x of the grid's western edge.
    north : float
        y of the grid's northern edge.
    cell_size : float
        Cell width and height.
    n_cols, n_rows : int
    """
    west: float
    north: float
    cell_size: float
    n_cols: int
    n_rows: int

    def __post_init__(self):
        if self.cell_size <= 0:
            raise ValueError(f"cell_size must be > 0, got {self.cell_size}")
        if self.n_cols < 1 or self.n_rows < 1:
            raise ValueError(f"Grid must have at least one cell, got "
                             f"{self.n_rows} x {self.n_cols}")

    @property
    def shape(self) -> tuple[int, int]:
        return self.n_rows, self.n_cols

    @property
    def n_cells(self) -> int:
        return self.n_rows * self.n_cols

    @property
    def east(self) -> float:
        return self.west + self.n_cols * self.cell_size

    @property
    def south(self) -> float:
        return self.north - self.n_rows * self.cell_size

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """(west, south, east, north)"""
        return self.west, self.south, self.east, self.north

    def x_centers(self) -> np.ndarray:
        return self.west + (np.arange(self.n_cols) + 0.5) * self.cell_size

    def y_centers(self) -> np.ndarray:
        return self.north - (np.arange(self.n_rows) + 0.5) * self.cell_size

    def cell_centers(self) -> np.ndarray:
        """(n_rows * n_cols, 2) cell centers in row-major order."""
        xx, yy = np.meshgrid(self.x_centers(), self.y_centers())
        return np.column_stack([xx.ravel(), yy.ravel()])

    @classmethod
    def from_bounds(cls, xmin: float, ymin: float, xmax: float, ymax: float,
                    cell_size: Optional[float] = None, n_cols: int = 100,
                    padding: float = 0.0) -> 'GridSpec':
        """
        Grid covering a bounding box.

        Parameters
        ----------
        xmin, ymin, xmax, ymax : float
        cell_size : float, optional
            If None, chosen so the padded width spans ``n_cols`` cells.
        n_cols : int
            Used only when ``cell_size`` is None.
        padding : float
            Margin added on every side, in coordinate units.
        """
        if xmax < xmin or ymax < ymin:
            raise ValueError("Bounds must satisfy xmin <= xmax and ymin <= ymax")
        xmin, ymin = xmin - padding, ymin - padding
        xmax, ymax = xmax + padding, ymax + padding
        width, height = xmax - xmin, ymax - ymin

        if cell_size is None:
            extent = max(width, height)
            if extent == 0:
                # degenerate extent: one cell centered on the point
                return cls(west=xmin - 0.5, north=ymax + 0.5, cell_size=1.0,
                           n_cols=1, n_rows=1)
            cell_size = (width if width > 0 else extent) / n_cols

        # tolerance keeps e.g. 2.02 / (2.02 / 20) from rounding up to 21
        cols = max(1, math.ceil(width / cell_size - 1e-9))
        rows = max(1, math.ceil(height / cell_size - 1e-9))
        return cls(west=xmin, north=ymax, cell_size=cell_size,
                   n_cols=cols, n_rows=rows)

    @classmethod
    def from_points(cls, x, y, cell_size: Optional[float] = None,
                    n_cols: int = 100, padding: float = 0.0) -> 'GridSpec':
        """Grid covering the bounding box of a point set."""
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        if len(x) == 0:
            raise InsufficientDataError("Cannot build a grid from zero points")
        return cls.from_bounds(x.min(), y.min(), x.max(), y.max(),
                               cell_size=cell_size, n_cols=n_cols, padding=padding)


@dataclass(frozen=True, eq=False)
class InterpolatedSurface:
    """
    IDW result on a regular grid.

    Attributes
    ----------
    grid : GridSpec
    values : np.ndarray
        (n_rows, n_cols) estimates; NaN marks no-data cells.
    power : float
    radius : float
        Search radius actually used (inf when unbounded).
    metric : str
    n_observations : int
    """
    grid: GridSpec
    values: np.ndarray
    power: float
    radius: float
    metric: str
    n_observations: int

    @property
    def mask(self) -> np.ndarray:
        """True where the cell has an estimate."""
        return np.isfinite(self.values)

    @property
    def coverage(self) -> float:
        """Fraction of cells with an estimate."""
        return float(self.mask.mean())

    def value_at(self, row: int, col: int) -> float:
        return float(self.values[row, col])

    def to_dataframe(self, dropna: bool = False) -> pd.DataFrame:
        """One row per cell: row, col, x, y, value."""
        rows, cols = np.indices(self.grid.shape)
        centers = self.grid.cell_centers()
        df = pd.DataFrame({
            'row': rows.ravel(),
            'col': cols.ravel(),
            'x': centers[:, 0],
            'y': centers[:, 1],
            'value': self.values.ravel(),
        })
        if dropna:
            df = df.dropna(subset=['value']).reset_index(drop=True)
        return df

    def summary(self) -> dict:
        finite = self.values[self.mask]
        return {
            'shape': self.grid.shape,
            'cell_size': self.grid.cell_size,
            'power': self.power,
            'radius': self.radius,
            'metric': self.metric,
            'coverage': self.coverage,
            'min': float(finite.min()) if finite.size else None,
            'max': float(finite.max()) if finite.size else None,
        }

    def __repr__(self) -> str:
        return (f"InterpolatedSurface ({self.grid.n_rows} x {self.grid.n_cols}, "
                f"power={self.power}, radius={self.radius:.4g}, "
                f"coverage={self.coverage:.1%})")


def default_search_radius(x, y, metric: str = 'euclidean') -> float:
    """
    Half the maximum pairwise distance between observations.

    A generous heuristic that favours coverage over locality; pass an
    explicit radius when a physically meaningful range is known.
    Returns inf when all observations coincide (or there is only one),
    so the surface is uniform instead of empty.
    """
    coords = np.column_stack([np.asarray(x, dtype=np.float64),
                              np.asarray(y, dtype=np.float64)])
    half = max_pairwise_distance(coords, metric=metric) / 2.0
    return half if half > 0 else np.inf


def _idw_chunk(d: np.ndarray, values: np.ndarray, radius: float, power: float) -> np.ndarray:
    """IDW estimates for one block of cells (rows of ``d``)."""
    in_range = d <= radius
    out = np.full(d.shape[0], np.nan)

    covered = in_range.any(axis=1)
    exact = (d == 0) & in_range
    has_exact = exact.any(axis=1)

    # coincident observation: take its value (first in input order)
    out[has_exact] = values[np.argmax(exact[has_exact], axis=1)]

    # one observation in range: its value, without (w * v) / w rounding
    single = covered & ~has_exact & (in_range.sum(axis=1) == 1)
    out[single] = values[np.argmax(in_range[single], axis=1)]

    todo = covered & ~has_exact & ~single
    if todo.any():
        dd = d[todo]
        with np.errstate(divide='ignore'):
            w = np.where(in_range[todo], 1.0 / dd ** power, 0.0)
        out[todo] = (w @ values) / w.sum(axis=1)
    return out


def idw_interpolate(
    x,
    y,
    values,
    grid: GridSpec,
    power: float = 2.0,
    radius: Optional[float] = None,
    metric: str = 'euclidean',
    chunk_size: int = 2048,
) -> InterpolatedSurface:
    """
    Inverse Distance Weighting interpolation onto a grid.

    Parameters
    ----------
    x, y : array-like
        Observation coordinates (longitude/latitude for 'haversine').
    values : array-like
        Observed values.
    grid : GridSpec
        Target grid.
    power : float
        Distance-weighting exponent p, by default 2.
    radius : float, optional
        Search radius (inclusive), in coordinate units for 'euclidean'
        or kilometres for 'haversine'. If None, uses
        ``default_search_radius``.
    metric : str
        'euclidean' or 'haversine'.
    chunk_size : int
        Cells evaluated per block. Does not affect results.

    Returns
    -------
    InterpolatedSurface
    """
    x = np.asarray(x, dtype=np.float64).ravel()
    y = np.asarray(y, dtype=np.float64).ravel()
    values = np.asarray(values, dtype=np.float64).ravel()

    if not (len(x) == len(y) == len(values)):
        raise MalformedInputError(
            f"x, y and values differ in length: {len(x)}, {len(y)}, {len(values)}"
        )
    if len(values) == 0:
        raise InsufficientDataError("IDW needs at least one observation")
    if not np.all(np.isfinite(values)):
        raise MalformedInputError("Observation values contain NaN or inf")
    if power <= 0:
        raise ValueError(f"power must be > 0, got {power}")
    if radius is not None and radius <= 0:
        raise ValueError(f"radius must be > 0, got {radius}")

    obs = np.column_stack([x, y])
    if not np.all(np.isfinite(obs)):
        raise MalformedInputError("Observation coordinates contain NaN or inf")

    if radius is None:
        radius = default_search_radius(x, y, metric=metric)

    centers = grid.cell_centers()
    out = np.empty(len(centers))
    for start in range(0, len(centers), chunk_size):
        stop = start + chunk_size
        d = pairwise_distances(centers[start:stop], obs, metric=metric)
        out[start:stop] = _idw_chunk(d, values, radius, power)

    surface = InterpolatedSurface(
        grid=grid,
        values=out.reshape(grid.shape),
        power=power,
        radius=radius,
        metric=metric,
        n_observations=len(values),
    )
    surface.values.setflags(write=False)

    print(f"  ✓ IDW surface: {grid.n_rows}x{grid.n_cols} cells, p={power}, "
          f"r={radius:.4g}, coverage={surface.coverage:.1%}")

    return surface


def interpolate_trait(
    table: 'SampleTable',
    grid: Optional[GridSpec] = None,
    power: float = 2.0,
    radius: Optional[float] = None,
    metric: str = 'euclidean',
    cell_size: Optional[float] = None,
    n_cols: int = 100,
    padding: float = 0.0,
) -> InterpolatedSurface:
    """
    IDW surface of a SampleTable's trait over its sample locations.

    If ``grid`` is None, a grid covering the samples' bounding box is
    built from ``cell_size`` / ``n_cols`` / ``padding`` (in degrees).
    """
    if not table.has_trait:
        raise MalformedInputError("SampleTable has no trait; run simulate_trait first")
    if grid is None:
        grid = GridSpec.from_points(table.longitude, table.latitude,
                                    cell_size=cell_size, n_cols=n_cols, padding=padding)
    return idw_interpolate(
        table.longitude, table.latitude, table.trait.to_numpy(),
        grid, power=power, radius=radius, metric=metric,
    )
