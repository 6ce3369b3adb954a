#!/usr/bin/env python3
"""Convenience runner for the places-visited pipeline.

Usage:
    python run.py --data-dir data --output data/places.gpkg
"""
import sys

from places_visited.main import main

if __name__ == "__main__":
    sys.exit(main())
