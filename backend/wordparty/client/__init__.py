"""Client-side helpers: API access, illustration requests and live views."""
