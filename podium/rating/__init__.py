"""Rating store, Glicko-2 updates and the monthly soft reset."""
