"""
draw_diagrams.py

generate some explanatory images to help readers understand how an image gets cut up
into triangles before it is warped onto the map
"""
import os
import sys

import numpy as np
from matplotlib import pyplot as plt
from matplotlib.axes import Axes
from matplotlib.ticker import MultipleLocator

from projectors import create_projector
from refine_mesh import RefinedMesh
from warp_image import FlatMesh, create_refiner, flatten, load_image_options, order_corners, run_refinement


def draw_diagrams(name: str, directory: str = "resources", output_directory: str = "images"):
	""" generate the visual aides for one of the option files
	    :param name: the option file to use will be {directory}/options_{name}.txt
	    :param directory: the folder where the option files live
	    :param output_directory: the folder in which to save the images
	"""
	plt.rcParams.update({'font.size': 12})
	os.makedirs(output_directory, exist_ok=True)

	projection, coordinates, steps, target_epsilon = load_image_options(name, directory)
	refiner = create_refiner(create_projector(projection), order_corners(coordinates))
	run_refinement(refiner, steps, target_epsilon)
	mesh = refiner.output()

	# figure 1: the triangles in both domains
	fig, (ax_left, ax_right) = plt.subplots(1, 2, figsize=(7.0, 3.8))
	plot_mesh_domains(ax_left, ax_right, mesh, color="#000000")
	fig.savefig(f"{output_directory}/{name}-domains.png", dpi=80)
	plt.close(fig)

	# figure 2: the texture coordinates
	fig, ax = plt.subplots(1, 1, figsize=(4.0, 4.0))
	plot_uv(ax, flatten(mesh), color="#5F1021")
	fig.savefig(f"{output_directory}/{name}-uv.png", dpi=80)
	plt.close(fig)


def plot_mesh_domains(ax_left: Axes, ax_right: Axes, mesh: RefinedMesh, color: str,
                      nodes: bool = True) -> None:
	""" plot a refined mesh in both its unprojected and projected coordinate systems """
	draw_triangles(ax_left, mesh.unprojected, mesh.triangles, color, nodes)
	ax_left.set_xlabel("x (image projection)")
	ax_left.set_ylabel("y (image projection)", labelpad=-1)
	draw_triangles(ax_right, mesh.projected, mesh.triangles, color, nodes)
	ax_right.set_xlabel("x (map)")
	ax_right.set_ylabel("y (map)", labelpad=11, rotation=-90)
	ax_right.invert_yaxis()  # the map's origin is at the top
	ax_right.yaxis.tick_right()
	ax_right.yaxis.set_label_position("right")
	plt.tight_layout()


def plot_uv(ax: Axes, flat_mesh: FlatMesh, color: str) -> None:
	""" plot the texture coordinates of a flattened mesh over the unit square """
	uv = flat_mesh.uv.reshape((-1, 2))
	triangles = flat_mesh.trigs.reshape((-1, 3))
	draw_triangles(ax, uv, triangles, color, nodes=False)
	ax.invert_yaxis()  # textures start from the top too
	set_ticks(ax, spacing=.25, fmt="{x:.2f}")
	ax.set_xlabel("u")
	ax.set_ylabel("v")


def draw_triangles(ax: Axes, points: np.ndarray, triangles: np.ndarray, color: str, nodes: bool) -> None:
	""" draw the edges of some triangles, and optionally their vertices """
	finite = np.all(np.isfinite(points[triangles].reshape((-1, 6))), axis=1)  # undefined triangles can't be drawn
	ax.triplot(points[:, 0], points[:, 1], triangles[finite], color=color, linewidth=0.5)
	if nodes:
		ax.scatter(points[:, 0], points[:, 1], color=color, s=4, zorder=10)
	ax.axis("equal")


def set_ticks(ax: Axes, spacing: float, fmt: str) -> None:
	""" adjust the tick marks of an axes to have a given spacing and number format """
	for axis in [ax.xaxis, ax.yaxis]:
		axis.set_major_locator(MultipleLocator(spacing))
		axis.set_major_formatter(fmt)


if __name__ == "__main__":
	draw_diagrams(sys.argv[1] if len(sys.argv) > 1 else "example")
	plt.show()
