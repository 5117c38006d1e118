"""
Inbox extractor package initialization.
"""

from .email_processing.models import AgentConfig, AggregatedResult, AnalysisJobResult, EmailDocument
from .email_processing.processor import ExtractionPipeline
from .runner import build_pipeline

__all__ = [
    'AgentConfig',
    'AggregatedResult',
    'AnalysisJobResult',
    'EmailDocument',
    'ExtractionPipeline',
    'build_pipeline'
]
