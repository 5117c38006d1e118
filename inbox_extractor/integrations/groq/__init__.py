from .client import EnhancedGroqClient
from .oracle import GroqExtractionOracle

__all__ = [
    'EnhancedGroqClient',
    'GroqExtractionOracle'
]
