"""Producer adapter and development sources."""
