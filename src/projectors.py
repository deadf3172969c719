#!/usr/bin/env python
"""
projectors.py

the functions that take a point in an image's own coordinate system and say where it belongs on
the map. the map is assumed to be drawn in web mercator, normalized so that the whole world fits
in the unit square with its origin at the top-left corner.
"""
from __future__ import annotations

from math import nan
from typing import Callable, Optional, Sequence

import h5py
import numpy as np
from numpy.typing import NDArray
from pyproj import Transformer
from scipy.interpolate import RegularGridInterpolator

from util import Point

# the distance from the center of the web mercator plane to its edge (m)
WEB_MERCATOR_HALF_EXTENT = 20037508.342789244


class ScreenSurface:
	""" the one thing a map library needs to tell us about itself: how its own coordinates relate to
	    those of some intermediate projected space
	"""
	def to_screen(self, point: Sequence[float]) -> Point:
		raise NotImplementedError()

	def to_source(self, point: Sequence[float]) -> Point:
		raise NotImplementedError()


class MercatorSurface(ScreenSurface):
	def __init__(self, half_extent: float = WEB_MERCATOR_HALF_EXTENT):
		""" the normalized web mercator space used by vector tile renderers, where [0, 0] is the
		    northwest corner of the world and [1, 1] is the southeast corner
		    :param half_extent: the easting of the east edge of the world (m)
		"""
		self.half_extent = half_extent

	def to_screen(self, point: Sequence[float]) -> Point:
		""" convert EPSG:3857 meters to normalized coordinates """
		x, y = point
		return ((x + self.half_extent)/(2*self.half_extent),
		        (self.half_extent - y)/(2*self.half_extent))

	def to_source(self, point: Sequence[float]) -> Point:
		""" convert normalized coordinates back to EPSG:3857 meters """
		x, y = point
		return (x*2*self.half_extent - self.half_extent,
		        self.half_extent - y*2*self.half_extent)


def create_projector(projection: str, surface: Optional[ScreenSurface] = None
                     ) -> Callable[[Sequence[float]], Point]:
	""" build a function that takes points in some coordinate reference system to the map's screen
	    space. points that can't be transformed come out as infinities.
	    :param projection: anything pyproj recognizes as a CRS, such as "EPSG:4326"
	    :param surface: the screen space of the map (defaults to normalized web mercator)
	"""
	if surface is None:
		surface = MercatorSurface()
	transformer = Transformer.from_crs(projection, "EPSG:3857", always_xy=True)

	def forward(point: Sequence[float]) -> Point:
		x, y = transformer.transform(point[0], point[1])
		return surface.to_screen((x, y))

	return forward


class TabulatedProjector:
	def __init__(self, x_nodes: NDArray[float], y_nodes: NDArray[float], xy_nodes: NDArray[float]):
		""" a projection defined only by its values at a grid of points, between which it gets
		    bilinearly interpolated
		    :param x_nodes: the m unprojected x values at which the nodes are defined
		    :param y_nodes: the n unprojected y values at which the nodes are defined
		    :param xy_nodes: the m×n×2 projected coordinates of each node
		"""
		if xy_nodes.shape != (x_nodes.size, y_nodes.size, 2):
			raise ValueError(f"the node array should be {x_nodes.size}×{y_nodes.size}×2, not "
			                 f"{'×'.join(str(n) for n in xy_nodes.shape)}")
		self.x_nodes = x_nodes
		self.y_nodes = y_nodes
		self.xy_nodes = xy_nodes
		self.x_projector = RegularGridInterpolator(
			(x_nodes, y_nodes), xy_nodes[:, :, 0], bounds_error=False, fill_value=nan)
		self.y_projector = RegularGridInterpolator(
			(x_nodes, y_nodes), xy_nodes[:, :, 1], bounds_error=False, fill_value=nan)

	def __call__(self, point: Sequence[float]) -> Point:
		""" take a point and smoothly interpolate it to x and y (points off the grid become NaN) """
		query = [[point[0], point[1]]]
		return float(self.x_projector(query)[0]), float(self.y_projector(query)[0])


def save_tabulated_projector(filename: str, projector: TabulatedProjector):
	""" save a tabulated projection to an HDF5 file """
	with h5py.File(filename, "w") as file:
		file.create_dataset("x", data=projector.x_nodes)
		file.create_dataset("y", data=projector.y_nodes)
		file.create_dataset("projection", data=projector.xy_nodes)


def load_tabulated_projector(filename: str) -> TabulatedProjector:
	""" load the x values, y values, and projected node locations from an HDF5 file """
	with h5py.File(filename, "r") as file:
		x_nodes = file["x"][:]
		y_nodes = file["y"][:]
		xy_nodes = file["projection"][:, :, :]
	return TabulatedProjector(np.asarray(x_nodes, dtype=float),
	                          np.asarray(y_nodes, dtype=float),
	                          np.asarray(xy_nodes, dtype=float))
