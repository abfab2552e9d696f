"""
swathremap Accessor module.

This module defines the xarray accessor that provides the .swathremap interface.
"""

from .accessor import SwathRemapAccessor

__all__ = ["SwathRemapAccessor"]
