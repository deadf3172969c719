#!/usr/bin/env python
"""
util.py

some handy utility functions that are used in multiple places
"""
from __future__ import annotations

from typing import Sequence

Point = tuple[float, float]
""" a pair of planar coordinates """


def midpoint(a: Sequence[float], b: Sequence[float]) -> Point:
	""" find the point halfway between two points """
	return (a[0] + b[0])/2, (a[1] + b[1])/2

def squared_distance(a: Sequence[float], b: Sequence[float]) -> float:
	""" the square of the euclidean distance between two points """
	return (a[0] - b[0])**2 + (a[1] - b[1])**2

def signed_area(a: Sequence[float], b: Sequence[float], c: Sequence[float]) -> float:
	""" twice the signed area of the triangle a-b-c; positive if it goes widdershins """
	return (b[0] - a[0])*(c[1] - a[1]) - (b[1] - a[1])*(c[0] - a[0])

def pair_key(a: int, b: int) -> int:
	""" combine two vertex indices into a single key that doesn't care about their order """
	if a < 0 or b < 0 or a >= 1 << 32 or b >= 1 << 32:
		raise ValueError(f"vertex indices must fit in 32 bits (got {a} and {b})")
	return (min(a, b) << 32) | max(a, b)


def load_options(filename: str) -> dict[str, str]:
	""" load a simple colon-separated text file """
	options = dict()
	with open(filename, "r", encoding="utf-8") as file:
		for line in file.readlines():
			if line.strip() == "" or line.lstrip().startswith("#"):
				continue
			key, value = line.split(":", 1)
			options[key.strip()] = value.strip()
	return options

def parse_coordinates(value: str) -> list[Point]:
	""" read a list of four corners written as eight comma-separated numbers """
	numbers = [float(number) for number in value.split(",")]
	if len(numbers) != 8:
		raise ValueError(f"four corners need eight numbers, not {len(numbers)}")
	return [(numbers[i], numbers[i + 1]) for i in range(0, 8, 2)]
