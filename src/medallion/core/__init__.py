"""Core primitives: errors, logging, settings, models and protocols."""
