"""Geometric kernel for single-photograph 3D modelling.

A Python package that calibrates a perspective camera from one photograph,
maps between image pixels and world rays, clips geometry to the view frustum
and maintains the vertex/edge/face model the user traces over the image.
"""

from __future__ import annotations

__version__ = "0.1.0"
