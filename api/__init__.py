"""HTTP surface of the ingestion service."""
