"""Core settings, exceptions and shared schemas."""
