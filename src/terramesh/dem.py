"""Raster elevation model, selection mask and scan-line rasterizer.

Sample ``(x, y)`` lives at ``heights[y, x]``; row 0 is the southern edge
and column 0 the western edge.  With ``post=True`` the samples sit on
the bounds (the first and last columns lie exactly on the west/east
edges); with ``post=False`` they sit at pixel centres.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np
from scipy import ndimage

from .models import DEM_NO_DATA

logger = logging.getLogger(__name__)


class Dem:
    """A georeferenced height grid.

    Parameters
    ----------
    heights : array-like
        2-D array, shape ``(rows, cols)``; :data:`DEM_NO_DATA` marks holes.
    west, south, east, north : float
        Geographic bounds in degrees.
    post : bool
        Post (corner) versus area (centre) sampling convention.
    """

    def __init__(
        self,
        heights,
        west: float,
        south: float,
        east: float,
        north: float,
        post: bool = True,
    ) -> None:
        data = np.array(heights, dtype=np.float64)
        if data.ndim != 2 or data.shape[0] < 2 or data.shape[1] < 2:
            raise ValueError(f"DEM must be a 2-D grid of at least 2x2 samples, got {data.shape}")
        if not (east > west and north > south):
            raise ValueError("DEM bounds must satisfy west < east and south < north")
        self.heights = data
        self.west = float(west)
        self.south = float(south)
        self.east = float(east)
        self.north = float(north)
        self.post = post
        self._filled: Optional[np.ndarray] = None

    @property
    def width(self) -> int:
        return int(self.heights.shape[1])

    @property
    def height(self) -> int:
        return int(self.heights.shape[0])

    @property
    def cell_deg(self) -> float:
        """The smaller of the two sample spacings, in degrees."""
        return min(
            abs(self.x_to_lon(1) - self.x_to_lon(0)),
            abs(self.y_to_lat(1) - self.y_to_lat(0)),
        )

    # ── coordinate conversion ───────────────────────────────────────

    def x_to_lon(self, x: float) -> float:
        if self.post:
            return self.west + (self.east - self.west) * x / (self.width - 1)
        return self.west + (self.east - self.west) * (x + 0.5) / self.width

    def y_to_lat(self, y: float) -> float:
        if self.post:
            return self.south + (self.north - self.south) * y / (self.height - 1)
        return self.south + (self.north - self.south) * (y + 0.5) / self.height

    def lon_to_x(self, lon: float) -> float:
        if self.post:
            return (lon - self.west) * (self.width - 1) / (self.east - self.west)
        return (lon - self.west) * self.width / (self.east - self.west) - 0.5

    def lat_to_y(self, lat: float) -> float:
        if self.post:
            return (lat - self.south) * (self.height - 1) / (self.north - self.south)
        return (lat - self.south) * self.height / (self.north - self.south) - 0.5

    # ── sampling ────────────────────────────────────────────────────

    def get(self, x: int, y: int) -> float:
        if 0 <= x < self.width and 0 <= y < self.height:
            return float(self.heights[y, x])
        return DEM_NO_DATA

    def is_valid(self, x: int, y: int) -> bool:
        return self.get(x, y) != DEM_NO_DATA

    def filled(self) -> np.ndarray:
        """Heights with every hole replaced by its nearest valid sample."""
        if self._filled is None:
            invalid = self.heights == DEM_NO_DATA
            if not invalid.any() or invalid.all():
                self._filled = self.heights
            else:
                _, (iy, ix) = ndimage.distance_transform_edt(invalid, return_indices=True)
                self._filled = self.heights[iy, ix]
                logger.info("filled %d DEM holes from nearest samples", int(invalid.sum()))
        return self._filled

    def get_filled(self, x: int, y: int) -> float:
        return float(self.filled()[y, x])

    def value_linear(self, lon: float, lat: float) -> float:
        """Bilinear height at ``(lon, lat)``, or :data:`DEM_NO_DATA`."""
        fx = self.lon_to_x(lon)
        fy = self.lat_to_y(lat)
        if fx < -1e-6 or fy < -1e-6 or fx > self.width - 1 + 1e-6 or fy > self.height - 1 + 1e-6:
            return DEM_NO_DATA
        fx = min(max(fx, 0.0), self.width - 1.0)
        fy = min(max(fy, 0.0), self.height - 1.0)
        x0 = min(int(math.floor(fx)), self.width - 2)
        y0 = min(int(math.floor(fy)), self.height - 2)
        tx = fx - x0
        ty = fy - y0
        corners = self.heights[y0:y0 + 2, x0:x0 + 2]
        if (corners == DEM_NO_DATA).any():
            return DEM_NO_DATA
        bottom = corners[0, 0] * (1.0 - tx) + corners[0, 1] * tx
        top = corners[1, 0] * (1.0 - tx) + corners[1, 1] * tx
        return float(bottom * (1.0 - ty) + top * ty)

    def nearest_index(self, lon: float, lat: float) -> Tuple[int, int]:
        x = int(round(self.lon_to_x(lon)))
        y = int(round(self.lat_to_y(lat)))
        return min(max(x, 0), self.width - 1), min(max(y, 0), self.height - 1)

    def xy_nearest(self, lon: float, lat: float) -> float:
        """Height of the nearest valid sample to ``(lon, lat)``."""
        x, y = self.nearest_index(lon, lat)
        return self.get_filled(x, y)


class DemMask:
    """Boolean "already used" flags for every DEM sample."""

    def __init__(self, width: int, height: int) -> None:
        self.used = np.zeros((height, width), dtype=bool)

    @classmethod
    def like(cls, dem: Dem) -> "DemMask":
        return cls(dem.width, dem.height)

    def get(self, x: int, y: int) -> bool:
        return bool(self.used[y, x])

    def set(self, x: int, y: int, value: bool = True) -> None:
        self.used[y, x] = value

    def set_column(self, x: int, value: bool = True) -> None:
        self.used[:, x] = value

    def set_row(self, y: int, value: bool = True) -> None:
        self.used[y, :] = value

    def count(self) -> int:
        return int(self.used.sum())


# ═══════════════════════════════════════════════════════════════════
# Scan-line polygon fill
# ═══════════════════════════════════════════════════════════════════


@dataclass
class PolyRasterizer:
    """Even-odd scan-line fill of a set of boundary segments.

    Segments are in DEM pixel coordinates.  A scan line at row *y*
    counts a segment when ``y1 <= y < y2``.
    """

    segments: List[Tuple[float, float, float, float]] = field(default_factory=list)

    def add_edge(self, x1: float, y1: float, x2: float, y2: float) -> None:
        if y1 == y2:
            return
        if y1 > y2:
            x1, y1, x2, y2 = x2, y2, x1, y1
        self.segments.append((x1, y1, x2, y2))

    def ranges(self, y: float) -> List[Tuple[int, int]]:
        """Half-open integer column ranges inside the fill on row *y*."""
        xs = sorted(
            x1 + (y - y1) * (x2 - x1) / (y2 - y1)
            for x1, y1, x2, y2 in self.segments
            if y1 <= y < y2
        )
        return [
            (int(math.ceil(xs[k])), int(math.ceil(xs[k + 1])))
            for k in range(0, len(xs) - 1, 2)
        ]

    def cells(self, width: int, height: int) -> Iterator[Tuple[int, int]]:
        """Yield every ``(x, y)`` sample inside the fill, row by row."""
        for y in range(height):
            for x_start, x_end in self.ranges(float(y)):
                for x in range(max(x_start, 0), min(x_end, width)):
                    yield x, y
