# Copyright (c) 2024 Troupe Contributors
# MIT License

"""Troupe release metadata."""

from __future__ import annotations

__version__ = "0.3.0"
__author__ = "Troupe Contributors"
__codename__ = "Understudy"

# Version info tuple for programmatic comparison
VERSION_INFO = (0, 3, 0)
