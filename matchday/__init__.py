"""Simulated football matchday: shared match clock, odds boards and bet settlement."""

__version__ = "0.1.0"
