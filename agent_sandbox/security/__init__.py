"""
Security Module

Static analysis of agent source and the canonical policy shared by every
isolation backend.
"""

from .analyzer import AnalysisReport, SecurityAnalyzer
from . import policies

__all__ = ["AnalysisReport", "SecurityAnalyzer", "policies"]
