"""CHORUS API routes."""
