"""
Regulator register extractor

Registers are published either as CSV (read with pandas) or as JSON.
"""

import io
import pandas as pd
import httpx
from typing import List, Any
from ingestion.extractors.api_extractor import HTTPExtractor
from core.exceptions import APIExtractionError
import logging

logger = logging.getLogger(__name__)


class RegulatorExtractor(HTTPExtractor):
    """
    Extract products from a regulator register.

    Configuration:
        format: "csv" for CSV registers; anything else is read as JSON
            with records under records/products/results
    """

    RECORD_KEYS = ("records", "products", "results")

    async def parse_response(self, response: httpx.Response) -> List[Any]:
        if str(self.configuration.get("format", "")).lower() == "csv":
            return self._parse_csv(response.text)
        return self.records_from_json(self.parse_json(response))

    def _parse_csv(self, text: str) -> List[Any]:
        try:
            df = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False)
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise APIExtractionError(
                "Failed to parse CSV register",
                context={"api_url": self.endpoint, "source_name": self.source_name},
                original_exception=e
            )

        # Normalize column names (strip whitespace, lowercase)
        df.columns = df.columns.str.strip().str.lower().str.replace(" ", "_")
        df = df.replace({"": None})

        records = df.to_dict(orient="records")
        logger.info(f"Read {len(records)} records from CSV register {self.source_name}")
        return records
