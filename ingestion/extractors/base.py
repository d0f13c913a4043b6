"""
Abstract base class for source-type fetch strategies
"""

from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional
import logging

from models.data_source import DataSource

logger = logging.getLogger(__name__)


class BaseExtractor(ABC):
    """
    Abstract base class for all fetch strategies.

    One instance serves one job: it is built from the data source row and
    returns the homogeneous list of raw product records for that source.
    """

    def __init__(self, source: DataSource):
        self.source = source
        self.source_name = source.name
        self.source_type = source.source_type
        self.configuration: Dict[str, Any] = dict(source.configuration or {})

    @abstractmethod
    async def fetch(self) -> List[Any]:
        """
        Fetch raw product records from the source.

        Returns:
            List of raw records (normally dicts; malformed items are left for
            the normalizer to reject one by one)
        """
        pass

    def config_value(self, *keys: str, default: Optional[Any] = None) -> Any:
        """First configured value among ``keys``."""
        for key in keys:
            value = self.configuration.get(key)
            if value not in (None, ""):
                return value
        return default
