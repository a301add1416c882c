"""Cycling graph extraction from OSM map data and SRTM elevation tiles."""

__version__ = "0.1.0"
