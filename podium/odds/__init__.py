"""Podium odds: Plackett-Luce strengths simulated by Monte Carlo."""
