from ingestion.loaders.catalog_loader import CatalogLoader

__all__ = ["CatalogLoader"]
