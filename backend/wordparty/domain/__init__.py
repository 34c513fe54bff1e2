"""Domain packages for Word Party."""
