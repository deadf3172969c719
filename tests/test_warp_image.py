import logging

import numpy as np
import pytest

from projectors import create_projector
from warp_image import (FlatMesh, create_refiner, load_flat_mesh, load_image_options, order_corners,
                        run_refinement, save_flat_mesh, warp_image, warp_image_from_options, warp_mesh)

# the corners of an image of the region around Chongqing, in the usual corner order
CHONGQING = [(105.289838, 32.204171),
             (110.195632, 32.204171),
             (110.195632, 28.164713),
             (105.289838, 28.164713)]
UNIT_SQUARE = [(0., 0.), (0., 1.), (1., 0.), (1., 1.)]


def identity(point):
	return point[0], point[1]

def squash(point):
	return point[0], point[1]**2


def test_order_corners():
	assert order_corners(CHONGQING) == [CHONGQING[0], CHONGQING[3], CHONGQING[1], CHONGQING[2]]
	with pytest.raises(ValueError):
		order_corners(CHONGQING[:3])


def test_unrefined_quad():
	mesh = warp_mesh(identity, UNIT_SQUARE, steps=0)
	assert mesh.num_vertices == 4
	assert mesh.num_triangles == 2
	np.testing.assert_array_equal(mesh.trigs, [0, 1, 3, 0, 3, 2])
	np.testing.assert_array_equal(mesh.pos, [0, 0, 0, 1, 1, 0, 1, 1])
	np.testing.assert_array_equal(mesh.uv, [0, 0, 0, 1, 1, 0, 1, 1])
	assert mesh.trigs.dtype == np.uint32


def test_linear_projection_stalls_immediately(caplog):
	with caplog.at_level(logging.WARNING):
		mesh = warp_mesh(identity, UNIT_SQUARE, steps=10)
	# only the forced pass happened
	assert mesh.num_vertices == 9
	assert mesh.num_triangles == 8
	assert "stalled" in caplog.text


def test_step_budget():
	mesh = warp_mesh(squash, UNIT_SQUARE, steps=20)
	assert mesh.num_vertices == 4 + 5 + 20
	assert mesh.pos.size == 2*mesh.num_vertices
	assert mesh.uv.size == 2*mesh.num_vertices
	assert mesh.trigs.max() < mesh.num_vertices
	assert np.all((mesh.uv >= 0) & (mesh.uv <= 1))


def test_error_budget():
	refiner = create_refiner(squash, UNIT_SQUARE)
	num_steps = run_refinement(refiner, steps=0, target_epsilon=1e-5)
	assert num_steps > 0
	assert refiner.epsilon < 1e-5
	refiner.check()


def test_negative_steps():
	with pytest.raises(ValueError):
		warp_mesh(squash, UNIT_SQUARE, steps=-1)


def test_seed_needs_four_corners():
	with pytest.raises(ValueError):
		create_refiner(squash, UNIT_SQUARE[:3])


def test_deterministic():
	a = warp_image("EPSG:4326", CHONGQING, steps=50)
	b = warp_image("EPSG:4326", CHONGQING, steps=50)
	np.testing.assert_array_equal(a.pos, b.pos)
	np.testing.assert_array_equal(a.uv, b.uv)
	np.testing.assert_array_equal(a.trigs, b.trigs)


def test_warp_image():
	mesh = warp_image("EPSG:4326", CHONGQING, steps=0)
	projector = create_projector("EPSG:4326")
	pos = mesh.pos.reshape((-1, 2))
	# the vertices go top-left, bottom-left, top-right, bottom-right
	for i, corner in enumerate([0, 3, 1, 2]):
		assert tuple(pos[i]) == pytest.approx(projector(CHONGQING[corner]))
	# on a web mercator map, the top-left corner is closest to the origin
	assert pos[0, 0] < pos[2, 0]
	assert pos[0, 1] < pos[1, 1]
	np.testing.assert_array_equal(mesh.uv, [0, 0, 0, 1, 1, 0, 1, 1])


def test_warp_image_refines():
	mesh = warp_image("EPSG:4326", CHONGQING, steps=30)
	assert mesh.num_vertices == 4 + 5 + 30
	pos = mesh.pos.reshape((-1, 2))
	assert np.all(np.isfinite(pos))
	# everything stays inside the image's own footprint on the map
	corners = pos[:4]
	assert np.all(pos >= corners.min(axis=0) - 1e-12)
	assert np.all(pos <= corners.max(axis=0) + 1e-12)


def test_flat_mesh_shapes():
	with pytest.raises(ValueError):
		FlatMesh(np.zeros(4), np.zeros(6), np.zeros(3, dtype=np.uint32))
	with pytest.raises(ValueError):
		FlatMesh(np.zeros(4), np.zeros(4), np.zeros(4, dtype=np.uint32))


def test_flat_mesh_file(tmp_path):
	mesh = warp_mesh(squash, UNIT_SQUARE, steps=10)
	filename = str(tmp_path/"mesh.h5")
	save_flat_mesh(filename, mesh)
	loaded = load_flat_mesh(filename)
	np.testing.assert_array_equal(loaded.pos, mesh.pos)
	np.testing.assert_array_equal(loaded.uv, mesh.uv)
	np.testing.assert_array_equal(loaded.trigs, mesh.trigs)
	assert loaded.num_triangles == mesh.num_triangles


def test_options(tmp_path):
	(tmp_path/"options_test.txt").write_text(
		"# a small image\n"
		"projection: EPSG:4326\n"
		"coordinates: 0, 10, 10, 10, 10, 0, 0, 0\n"
		"steps: 7\n", encoding="utf-8")
	projection, coordinates, steps, target_epsilon = load_image_options("test", str(tmp_path))
	assert projection == "EPSG:4326"
	assert coordinates == [(0, 10), (10, 10), (10, 0), (0, 0)]
	assert steps == 7
	assert target_epsilon is None

	mesh = warp_image_from_options("test", str(tmp_path))
	assert mesh.num_vertices == 4 + 5 + 7


def test_options_with_error_budget(tmp_path):
	(tmp_path/"options_test.txt").write_text(
		"projection: EPSG:4326\n"
		"coordinates: 0, 60, 30, 60, 30, 0, 0, 0\n"
		"epsilon: 1e-7\n", encoding="utf-8")
	projection, coordinates, steps, target_epsilon = load_image_options("test", str(tmp_path))
	assert target_epsilon == 1e-7
	refiner = create_refiner(create_projector(projection), order_corners(coordinates))
	run_refinement(refiner, steps, target_epsilon)
	assert refiner.epsilon < 1e-7
