"""
Trajectory Engine
=================
The integration loop that advances particles between bounces, and the
runner that launches many trajectories and merges their density maps.

Note: This package should be pure Python/NumPy and should NOT write files.
"""
