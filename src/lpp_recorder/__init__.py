"""Records periodic snapshots of the LPP (Ljubljana city bus) open data API."""

__version__ = "0.1.0"
