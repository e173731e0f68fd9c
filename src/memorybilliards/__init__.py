"""
Self-avoiding billiards.

Point particles bounce elastically inside a table while a decaying memory
field bends their flight away from recently visited regions. Visits are
accumulated into a density grid that is rendered as a 32-bit grayscale TIFF.
"""
from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("memorybilliards")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
