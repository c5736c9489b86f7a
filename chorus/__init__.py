"""CHORUS — communal clip ingestion and drone composition.

Many short recordings in, one continuous stream out.
"""

__version__ = "0.1.0"
