"""CHORUS HTTP surface."""
