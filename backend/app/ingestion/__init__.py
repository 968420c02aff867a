"""Directory scanning, file classification and the ingestion pipeline."""
