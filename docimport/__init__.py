"""docimport: load CSV / JSON / spreadsheet files into JSONB document collections."""

__version__ = "0.1.0"
