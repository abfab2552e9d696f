"""
Coordinate Reference System (CRS) and datum module for swathremap.

This module handles datum definitions, datum shifts and coordinate
transformation between CRS, using pyproj as the geodesy backend.
"""

from .crs_manager import CRSManager, Datum, crs_manager, WGS84, NAD83, NAD27

__all__ = ['CRSManager', 'Datum', 'crs_manager', 'WGS84', 'NAD83', 'NAD27']
