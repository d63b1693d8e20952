"""Iteration engine, fractal family, seed regions and boundary search."""
