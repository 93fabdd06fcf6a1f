"""Candidate intake with duplicate detection and resolution."""

__version__ = "0.3.0"
