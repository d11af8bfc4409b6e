"""Monthly rankings and season archives."""
