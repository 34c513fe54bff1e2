"""Room registry: lobbies identified by short join codes."""
