"""Loaders that bring rows into the warehouse."""

from .base import BaseLoader, LoadResult
from .csv_loader import CsvLoader, load_csv_file
from .seed import seed_sample_data

__all__ = ["BaseLoader", "CsvLoader", "LoadResult", "load_csv_file", "seed_sample_data"]
