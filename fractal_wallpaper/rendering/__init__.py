"""Palettes, CDF coloring and the full and adaptive renderers."""
