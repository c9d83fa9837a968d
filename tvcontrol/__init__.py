#!/usr/bin/env python3
"""LG webOS TV discovery, pairing and remote control"""

__version__ = "1.0.0"
