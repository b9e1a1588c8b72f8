"""Extractor interface for pluggable extraction implementations."""

from abc import ABC, abstractmethod

from app.extraction.types import OrderExtractionResult


class ExtractorInterface(ABC):
    """Abstract order extractor."""

    @abstractmethod
    def extract(self, document: str) -> OrderExtractionResult:
        """Extract structured order fields from a compiled session document."""
