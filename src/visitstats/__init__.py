"""
visitstats
==========

Turn a chronological log of geolocation pings into per-city and per-country
travel statistics.
"""

from importlib.metadata import PackageNotFoundError, version


try:
    __version__ = version("visitstats")
except PackageNotFoundError:  # pragma: no cover - occurs in local dev before install
    __version__ = "0.0.0"

__all__ = ["__version__"]
