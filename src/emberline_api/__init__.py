"""HTTP surface for the Emberline engine."""
