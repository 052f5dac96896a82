"""Comparison engine - orchestrates the analysis pipeline.

Contains:
- ComparisonEngine: sync, block layout, balance, extraction and comparison
  of a reference and a comparison recording
"""

from .comparison_engine import ComparisonEngine

__all__ = ['ComparisonEngine']
