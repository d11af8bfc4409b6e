"""Weekly betting cycle, bet placement and settlement."""
