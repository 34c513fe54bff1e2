"""Word Party backend package."""
