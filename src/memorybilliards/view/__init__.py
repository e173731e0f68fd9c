"""Turning finished density grids into images."""
