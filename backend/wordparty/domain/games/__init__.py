"""Games: ready check, word positions and submissions."""
