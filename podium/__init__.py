"""Podium - rating, odds and bet settlement engine for weekly race betting."""

__version__ = "0.1.0"
