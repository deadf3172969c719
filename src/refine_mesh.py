#!/usr/bin/env python
"""
refine_mesh.py

adaptively subdivide a planar triangle mesh so that a nonlinear projection can be drawn as a
piecewise-linear one. the edge whose midpoint is projected least faithfully by a strait line is
always split first, so the vertices end up concentrated wherever the projection bends the most.
"""
from __future__ import annotations

import heapq
import logging
from math import inf, isfinite
from typing import Callable, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from util import Point, midpoint, pair_key, squared_distance

# the number of steps in a row that may fail to lower the maximum epsilon before we give up
STALL_LIMIT = 500

Projector = Callable[[Point], Sequence[float]]
""" a function that takes an unprojected point and returns the projected point """


class MeshConsistencyError(RuntimeError):
	""" the mesh's adjacency bookkeeping has been corrupted. this is a bug, not a bad input. """
	pass


class QueueEntry:
	def __init__(self, segment: int, v1: int, v2: int, epsilon: float,
	             midpoint: Point, projected_midpoint: Point):
		""" a segment waiting to be split, along with the midpoint we already paid to project
		    :param segment: the id of the segment this was made for (used to break ties)
		    :param v1: the index of one endpoint
		    :param v2: the index of the other endpoint
		    :param epsilon: the squared distance between the projected midpoint and the midpoint of
		                    the projected endpoints
		    :param midpoint: the unprojected midpoint of the segment
		    :param projected_midpoint: the projection of the unprojected midpoint
		"""
		self.segment = segment
		self.v1 = v1
		self.v2 = v2
		self.epsilon = epsilon
		self.midpoint = midpoint
		self.projected_midpoint = projected_midpoint

	def __lt__(self, other: QueueEntry):
		# heapq pops the smallest, so the biggest epsilon must come first
		if self.epsilon != other.epsilon:
			return self.epsilon > other.epsilon
		else:
			return self.segment < other.segment

	def __repr__(self):
		return f"QueueEntry({self.v1}--{self.v2}, epsilon={self.epsilon:.3g})"


class RefinedMesh:
	def __init__(self, unprojected: NDArray[float], projected: NDArray[float],
	             uv: NDArray[float], triangles: NDArray[int]):
		""" a snapshot of the vertices and triangles of a MeshRefiner
		    :param unprojected: the V×2 vertex coordinates before projection
		    :param projected: the V×2 vertex coordinates after projection
		    :param uv: the V×2 texture coordinates of each vertex
		    :param triangles: the T×3 vertex indices of each triangle
		"""
		self.unprojected = unprojected
		self.projected = projected
		self.uv = uv
		self.triangles = triangles

	@property
	def num_vertices(self) -> int:
		return self.unprojected.shape[0]

	@property
	def num_triangles(self) -> int:
		return self.triangles.shape[0]


class MeshRefiner:
	def __init__(self, projector: Projector, vertices: Sequence[Sequence[float]],
	             uv: Sequence[Sequence[float]], triangles: Sequence[Sequence[int]]):
		""" a triangle mesh that can be subdivided until it approximates a projection well
		    :param projector: the function to approximate. it must be deterministic. it may return
		                      non-finite values where it is undefined; edges that touch those will
		                      simply never be split.
		    :param vertices: the initial unprojected vertex coordinates
		    :param uv: the texture coordinates of each vertex, which will be linearly interpolated
		               whenever a segment is split
		    :param triangles: the vertex indices of each triangle. the mesh is expected to be planar
		                      and non-overlapping, with every edge shared by at most two triangles.
		"""
		if len(uv) != len(vertices):
			raise ValueError(f"there must be one uv per vertex (got {len(uv)} uvs for {len(vertices)} vertices)")
		for triangle in triangles:
			if len(triangle) != 3:
				raise ValueError(f"triangles must have three vertices, not {len(triangle)}")
			if len(set(triangle)) != 3:
				raise ValueError(f"the triangle {tuple(triangle)} uses the same vertex twice")
			for v in triangle:
				if not 0 <= v < len(vertices):
					raise ValueError(f"the triangle {tuple(triangle)} refers to a nonexistent vertex")

		self._projector = projector
		self._vertices: list[Point] = [(float(x), float(y)) for x, y in vertices]
		self._uv: list[Point] = [(float(u), float(v)) for u, v in uv]
		self._projected: list[Point] = [self._project(vertex) for vertex in self._vertices]
		self._triangles: list[tuple[int, int, int]] = [(int(a), int(b), int(c)) for a, b, c in triangles]

		# the segment arena. a split segment leaves None in both lists so that ids stay stable.
		self._segment_vertices: list[Optional[tuple[int, int]]] = []
		self._segment_triangles: list[Optional[list[int]]] = []
		# the live segment id for each pair of vertices
		self._segment_lookup: dict[int, int] = {}

		# the segments that may yet be split, biggest epsilon first
		self._queue: list[QueueEntry] = []

		for t, (v0, v1, v2) in enumerate(self._triangles):
			self._register_segment(v0, v1, t)
			self._register_segment(v1, v2, t)
			self._register_segment(v2, v0, t)

	def _project(self, point: Point) -> Point:
		x, y = self._projector(point)
		return float(x), float(y)

	def _register_segment(self, v1: int, v2: int, t: int, max_epsilon: float = inf) -> int:
		""" find or create the segment linking two vertices, and mark triangle t as using it. new
		    segments get queued for splitting unless their epsilon is non-finite or not below
		    max_epsilon.
		    :return: the segment id
		"""
		key = pair_key(v1, v2)
		if key in self._segment_lookup:
			found = self._segment_lookup[key]
			if t not in self._segment_triangles[found]:
				self._segment_triangles[found].append(t)
			return found

		s = len(self._segment_vertices)
		self._segment_vertices.append((v1, v2))
		self._segment_triangles.append([t])
		self._segment_lookup[key] = s

		# compare the projection of the midpoint to the midpoint of the projections
		unprojected_midpoint = midpoint(self._vertices[v1], self._vertices[v2])
		projected_midpoint = self._project(unprojected_midpoint)
		epsilon = squared_distance(projected_midpoint,
		                           midpoint(self._projected[v1], self._projected[v2]))

		if isfinite(epsilon) and epsilon < max_epsilon:
			heapq.heappush(self._queue, QueueEntry(
				s, v1, v2, epsilon, unprojected_midpoint, projected_midpoint))
		return s

	@property
	def epsilon(self) -> float:
		""" the largest epsilon of any segment still waiting to be split """
		if len(self._queue) == 0:
			return 0.
		return self._queue[0].epsilon

	@epsilon.setter
	def epsilon(self, target_epsilon: float):
		self.lower_epsilon(target_epsilon)

	@property
	def num_vertices(self) -> int:
		return len(self._vertices)

	@property
	def num_triangles(self) -> int:
		return len(self._triangles)

	@property
	def num_queued(self) -> int:
		return len(self._queue)

	def segment_triangles(self, v1: int, v2: int) -> list[int]:
		""" the triangles that currently share the edge between two vertices (empty if there's no
		    such edge)
		"""
		s = self._segment_lookup.get(pair_key(v1, v2))
		if s is None:
			return []
		return list(self._segment_triangles[s])

	def output(self) -> RefinedMesh:
		""" copy the current state of the mesh into some numpy arrays """
		return RefinedMesh(
			unprojected=np.array(self._vertices, dtype=float).reshape((-1, 2)),
			projected=np.array(self._projected, dtype=float).reshape((-1, 2)),
			uv=np.array(self._uv, dtype=float).reshape((-1, 2)),
			triangles=np.array(self._triangles, dtype=int).reshape((-1, 3)),
		)

	def step(self, max_epsilon: Optional[float] = None) -> bool:
		""" split the segment with the largest epsilon, whatever that epsilon may be
		    :param max_epsilon: the new segments this creates will only be queued if their epsilons
		                        are below this. by default it is the epsilon of the segment being
		                        split, so the maximum epsilon can never go up. pass inf to queue
		                        every new segment.
		    :return: whether there was anything to split
		"""
		if len(self._queue) == 0:
			return False
		entry = heapq.heappop(self._queue)
		if max_epsilon is None:
			max_epsilon = entry.epsilon
		self._split_segment(entry, max_epsilon)
		return True

	def force(self):
		""" split every segment currently in the queue exactly once. this can be useful to run before
		    stepping, so that no part of the mesh starts out too coarse.
		"""
		entries = sorted(self._queue)
		self._queue = []
		logging.debug(f"forcing a split of all {len(entries)} queued segments")
		for entry in entries:
			self._split_segment(entry, inf)

	def lower_epsilon(self, target_epsilon: float) -> int:
		""" subdivide the mesh until the maximum epsilon is below the given threshold, or until it
		    stops going down.
		    :param target_epsilon: the threshold, in the same units as the epsilons themselves:
		                           units of the projected space, squared.
		    :return: the number of steps that were taken
		"""
		num_steps = 0
		steps_without_improvement = 0
		last_epsilon = self.epsilon
		while len(self._queue) > 0 and self.epsilon >= target_epsilon:
			if self.epsilon == 0:
				# epsilons can't be negative, so no split can help
				logging.warning("mesh refinement stalled because the maximum epsilon is already zero.")
				break
			self.step()
			num_steps += 1

			current_epsilon = self.epsilon
			if current_epsilon >= last_epsilon:
				steps_without_improvement += 1
				if steps_without_improvement >= STALL_LIMIT:
					logging.warning(f"mesh refinement stalled at epsilon={current_epsilon:.3g} after "
					                f"{num_steps} steps. the image may need hints for proper warping.")
					break
			else:
				steps_without_improvement = 0
				last_epsilon = current_epsilon
		logging.debug(f"lowered the maximum epsilon to {self.epsilon:.3g} in {num_steps} steps")
		return num_steps

	def _split_segment(self, entry: QueueEntry, max_epsilon: float):
		""" delete a segment, spawn a new vertex at its midpoint, and divide each triangle the
		    segment was part of (either 1 or 2) in two.
		"""
		v1, v2 = entry.v1, entry.v2
		key = pair_key(v1, v2)
		s = self._segment_lookup.get(key)
		if s is None:
			raise MeshConsistencyError(f"the segment {v1}--{v2} was queued but it no longer exists")
		triangles = self._segment_triangles[s]
		if len(triangles) >= 3:
			raise MeshConsistencyError(f"somehow the segment {v1}--{v2} is shared by {len(triangles)} triangles")

		# tombstone the segment
		self._segment_vertices[s] = None
		self._segment_triangles[s] = None
		del self._segment_lookup[key]

		vm = len(self._vertices)
		self._vertices.append(entry.midpoint)
		self._projected.append(entry.projected_midpoint)
		self._uv.append(midpoint(self._uv[v1], self._uv[v2]))
		logging.debug(f"split {v1}--{v2} at vertex {vm} (epsilon={entry.epsilon:.3g})")

		for t in triangles:
			self._split_triangle(v1, v2, vm, t, max_epsilon)

	def _split_triangle(self, v1: int, v2: int, vm: int, t: int, max_epsilon: float):
		""" divide a triangle in two along the line from the midpoint of one of its edges to the
		    opposite vertex. the first half reuses the triangle's index and the second half goes on
		    the end.
		    :param v1: one end of the edge being split
		    :param v2: the other end of the edge being split
		    :param vm: the new vertex at the midpoint of the edge
		    :param t: the index of the triangle to split
		    :param max_epsilon: new segments with epsilons at least this big won't be queued; they'll
		                        stay in the mesh but never be split
		"""
		a, b, c = self._triangles[t]
		# find the third vertex and whether v1-v2 runs with the triangle or against it
		if (a, b) == (v1, v2):
			v3, forward = c, True
		elif (b, c) == (v1, v2):
			v3, forward = a, True
		elif (c, a) == (v1, v2):
			v3, forward = b, True
		elif (b, a) == (v1, v2):
			v3, forward = c, False
		elif (c, b) == (v1, v2):
			v3, forward = a, False
		elif (a, c) == (v1, v2):
			v3, forward = b, False
		else:
			raise MeshConsistencyError(f"the triangle {t} {self._triangles[t]} doesn't contain the edge {v1}--{v2}")

		t2 = len(self._triangles)
		if forward:
			self._triangles[t] = (v1, vm, v3)
			self._triangles.append((vm, v2, v3))
		else:
			self._triangles[t] = (vm, v1, v3)
			self._triangles.append((v2, vm, v3))

		# the old triangle is gone from its other two edges (but those edges may have another triangle)
		for edge in [(v2, v3), (v3, v1)]:
			s = self._segment_lookup.get(pair_key(*edge))
			if s is not None:
				if t not in self._segment_triangles[s]:
					raise MeshConsistencyError(f"the segment {edge[0]}--{edge[1]} doesn't know it's part of triangle {t}")
				self._segment_triangles[s].remove(t)

		self._register_segment(v1, vm, t, max_epsilon)
		self._register_segment(vm, v3, t, max_epsilon)
		self._register_segment(v3, v1, t, max_epsilon)

		self._register_segment(v2, vm, t2, max_epsilon)
		self._register_segment(vm, v3, t2, max_epsilon)
		self._register_segment(v3, v2, t2, max_epsilon)

	def check(self):
		""" make sure the segments and triangles all agree with each other """
		for s, triangles in enumerate(self._segment_triangles):
			if triangles is None:
				continue
			v1, v2 = self._segment_vertices[s]
			if self._segment_lookup.get(pair_key(v1, v2)) != s:
				raise MeshConsistencyError(f"the segment {v1}--{v2} is missing from the lookup table")
			if not 1 <= len(triangles) <= 2:
				raise MeshConsistencyError(f"the segment {v1}--{v2} is shared by {len(triangles)} triangles")
			for t in triangles:
				if v1 not in self._triangles[t] or v2 not in self._triangles[t]:
					raise MeshConsistencyError(f"the segment {v1}--{v2} thinks it's part of triangle {t} {self._triangles[t]}")
		for t, (a, b, c) in enumerate(self._triangles):
			for v1, v2 in [(a, b), (b, c), (c, a)]:
				s = self._segment_lookup.get(pair_key(v1, v2))
				if s is None:
					raise MeshConsistencyError(f"the triangle {t} has an edge {v1}--{v2} with no segment")
				if t not in self._segment_triangles[s]:
					raise MeshConsistencyError(f"the segment {v1}--{v2} doesn't know it's part of triangle {t}")
