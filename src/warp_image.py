#!/usr/bin/env python
"""
warp_image.py

take the corners of an image in some coordinate reference system and build the triangle mesh
that a renderer needs to draw it, warped, on a web mercator map. the output is a set of flat
arrays of vertex positions, texture coordinates, and triangle indices.
"""
from __future__ import annotations

import logging
import sys
from typing import Optional, Sequence

import h5py
import numpy as np
from numpy.typing import NDArray

from projectors import ScreenSurface, create_projector
from refine_mesh import MeshRefiner, Projector, RefinedMesh
from util import Point, load_options, parse_coordinates

# the number of refinement steps to take if nobody says otherwise
DEFAULT_STEPS = 100

# where each vertex of the seed quad comes from in the usual (top-left, top-right, bottom-right,
# bottom-left) corner order
CORNER_ORDER = [0, 3, 1, 2]
# the texture coordinates of the seed quad (top-left, bottom-left, top-right, bottom-right)
SEED_UV = [(0., 0.), (0., 1.), (1., 0.), (1., 1.)]
# the two triangles that cover the seed quad
SEED_TRIANGLES = [(0, 1, 3), (0, 3, 2)]


class FlatMesh:
	def __init__(self, pos: NDArray[float], uv: NDArray[float], trigs: NDArray[int]):
		""" a triangle mesh in the form a renderer wants it: flat arrays of numbers
		    :param pos: the projected coordinates of each vertex, interleaved as x0, y0, x1, y1, ...
		    :param uv: the texture coordinates of each vertex, interleaved the same way
		    :param trigs: the vertex indices of each triangle, three at a time
		"""
		if pos.size != uv.size or pos.size%2 != 0:
			raise ValueError(f"pos and uv must both hold two numbers per vertex (got {pos.size} and {uv.size})")
		if trigs.size%3 != 0:
			raise ValueError(f"trigs must hold three numbers per triangle (got {trigs.size})")
		self.pos = pos
		self.uv = uv
		self.trigs = trigs

	@property
	def num_vertices(self) -> int:
		return self.pos.size//2

	@property
	def num_triangles(self) -> int:
		return self.trigs.size//3


def create_refiner(projector: Projector, vertices: Sequence[Sequence[float]]) -> MeshRefiner:
	""" set up the two-triangle quad that refinement starts from
	    :param projector: the function that takes unprojected points to the map
	    :param vertices: the unprojected top-left, bottom-left, top-right, and bottom-right corners
	"""
	if len(vertices) != 4:
		raise ValueError(f"the seed quad needs four corners, not {len(vertices)}")
	return MeshRefiner(projector, vertices, SEED_UV, SEED_TRIANGLES)


def run_refinement(refiner: MeshRefiner, steps: int = DEFAULT_STEPS,
                   target_epsilon: Optional[float] = None) -> int:
	""" subdivide a freshly seeded mesh: one forced pass over every segment, then either a fixed
	    number of steps or as many as it takes to reach an error budget
	    :param refiner: the mesh to refine
	    :param steps: the number of segments to split after the forced pass. 0 means the mesh is
	                  left as-is.
	    :param target_epsilon: if this is given, refine until the maximum epsilon drops below it
	                           instead of counting steps (in squared map units)
	    :return: the number of steps taken after the forced pass
	"""
	if steps < 0:
		raise ValueError(f"the number of steps can't be negative ({steps})")

	if target_epsilon is not None:
		refiner.force()
		num_steps = refiner.lower_epsilon(target_epsilon)
	elif steps > 0:
		refiner.force()
		num_steps = 0
		while num_steps < steps and refiner.num_queued > 0:
			if refiner.epsilon == 0:
				logging.warning("mesh refinement stalled because the maximum epsilon is already zero.")
				break
			refiner.step()
			num_steps += 1
	else:
		num_steps = 0
	logging.info(f"refined the image mesh to {refiner.num_vertices} vertices and "
	             f"{refiner.num_triangles} triangles in {num_steps} steps "
	             f"(epsilon={refiner.epsilon:.3g})")
	return num_steps


def flatten(mesh: RefinedMesh) -> FlatMesh:
	""" interleave the projected vertices, texture coordinates, and triangles into flat arrays """
	return FlatMesh(
		pos=mesh.projected.ravel(),
		uv=mesh.uv.ravel(),
		trigs=mesh.triangles.astype(np.uint32).ravel(),
	)


def warp_mesh(projector: Projector, vertices: Sequence[Sequence[float]],
              steps: int = DEFAULT_STEPS, target_epsilon: Optional[float] = None) -> FlatMesh:
	""" refine the seed quad against an arbitrary projection and flatten the result
	    :param projector: the function that takes unprojected points to the map
	    :param vertices: the unprojected top-left, bottom-left, top-right, and bottom-right corners
	    :param steps: the number of refinement steps to take
	    :param target_epsilon: an error budget to refine to instead of a step count
	"""
	refiner = create_refiner(projector, vertices)
	run_refinement(refiner, steps, target_epsilon)
	return flatten(refiner.output())


def order_corners(coordinates: Sequence[Sequence[float]]) -> list[Point]:
	""" rearrange the corners of an image from (top-left, top-right, bottom-right, bottom-left)
	    order into the order of the seed quad's vertices
	"""
	if len(coordinates) != 4:
		raise ValueError(f"an image has four corners, not {len(coordinates)}")
	return [(float(coordinates[i][0]), float(coordinates[i][1])) for i in CORNER_ORDER]


def warp_image(projection: str, coordinates: Sequence[Sequence[float]],
               steps: int = DEFAULT_STEPS, target_epsilon: Optional[float] = None,
               surface: Optional[ScreenSurface] = None) -> FlatMesh:
	""" build the mesh for drawing an image on a web mercator map
	    :param projection: the coordinate reference system of the image, such as "EPSG:4326"
	    :param coordinates: the top-left, top-right, bottom-right, and bottom-left corners of the
	                        image, in that projection
	    :param steps: the number of refinement steps to take
	    :param target_epsilon: an error budget to refine to instead of a step count
	    :param surface: the screen space of the map (defaults to normalized web mercator)
	"""
	vertices = order_corners(coordinates)
	projector = create_projector(projection, surface)
	return warp_mesh(projector, vertices, steps, target_epsilon)


def save_flat_mesh(filename: str, mesh: FlatMesh):
	""" save a flat mesh to an HDF5 file """
	with h5py.File(filename, "w") as file:
		file.attrs["num_vertices"] = mesh.num_vertices
		file.attrs["num_triangles"] = mesh.num_triangles
		file.create_dataset("pos", data=mesh.pos)
		file.create_dataset("uv", data=mesh.uv)
		file.create_dataset("trigs", data=mesh.trigs)


def load_flat_mesh(filename: str) -> FlatMesh:
	""" load the positions, texture coordinates, and triangles from an HDF5 file """
	with h5py.File(filename, "r") as file:
		mesh = FlatMesh(file["pos"][:], file["uv"][:], file["trigs"][:])
		if mesh.num_vertices != file.attrs["num_vertices"] or mesh.num_triangles != file.attrs["num_triangles"]:
			raise ValueError(f"{filename} is inconsistent with its own header")
	return mesh


def load_image_options(name: str, directory: str = "resources"
                       ) -> tuple[str, list[Point], int, Optional[float]]:
	""" read the projection, corners, step count, and error budget of an image from an option file
	    :param name: the file to load will be {directory}/options_{name}.txt
	    :param directory: the folder where the option files live
	"""
	options = load_options(f"{directory}/options_{name}.txt")
	logging.info(f"loaded options from {name}")
	coordinates = parse_coordinates(options["coordinates"])
	steps = int(options.get("steps", DEFAULT_STEPS))
	target_epsilon = float(options["epsilon"]) if "epsilon" in options else None
	return options["projection"], coordinates, steps, target_epsilon


def warp_image_from_options(name: str, directory: str = "resources") -> FlatMesh:
	""" warp an image as described by an option file """
	projection, coordinates, steps, target_epsilon = load_image_options(name, directory)
	return warp_image(projection, coordinates, steps, target_epsilon)


if __name__ == "__main__":
	logging.basicConfig(
		level=logging.INFO,
		format="%(asctime)s | %(levelname)s | %(message)s",
		datefmt="%b %d %H:%M",
		handlers=[logging.StreamHandler(sys.stdout)]
	)
	name = sys.argv[1] if len(sys.argv) > 1 else "example"
	flat_mesh = warp_image_from_options(name)
	save_flat_mesh(f"{name}.h5", flat_mesh)
	logging.info(f"mesh {name} saved!")
