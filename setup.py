#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
duopunch Setup Script (Legacy Compatibility)
============================================

[DEPRECATED] This file exists only for backward compatibility with old pip versions.
All configuration is in pyproject.toml (PEP 621).

For modern installations, use:
    pip install .
    pip install -e .[dev]
"""

from setuptools import setup

# All configuration is in pyproject.toml
setup()
