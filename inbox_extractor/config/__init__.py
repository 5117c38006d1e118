"""Configuration for the extraction pipeline."""

from inbox_extractor.config.analyzer_config import ANALYZER_CONFIG
from inbox_extractor.config.settings import ExtractorSettings, get_settings

__all__ = ["ANALYZER_CONFIG", "ExtractorSettings", "get_settings"]
