"""Streaks, XP and levels."""
