"""progtable: schema-driven evaluation engine for the programs table."""

__version__ = "0.3.0"
