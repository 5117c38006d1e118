from groq import Groq
from typing import Dict, List, Optional
from datetime import datetime
import asyncio
import os
from dotenv import load_dotenv
import logging

from inbox_extractor.exceptions import OracleError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = 'llama-3.3-70b-versatile'
# Recent request and error entries kept in memory; totals are counted separately
METRICS_HISTORY_LIMIT = 100


class EnhancedGroqClient:
    """Enhanced Groq client with retry logic and error handling."""

    def __init__(self, api_key: Optional[str] = None, retry_base_delay: float = 2.0):
        """Initialize the enhanced Groq client with API key from environment or parameter.

        Args:
            api_key: Groq API key, read from GROQ_API_KEY when omitted
            retry_base_delay: Base of the exponential backoff between attempts, in seconds
        """
        load_dotenv(override=False)
        self.api_key = api_key or os.getenv('GROQ_API_KEY')
        if not self.api_key:
            raise ValueError("GROQ_API_KEY must be provided either through initialization or environment")

        self.client = Groq(api_key=self.api_key)
        self.retry_base_delay = retry_base_delay
        self.metrics = {
            'requests': [],
            'errors': [],
            'performance': {
                'avg_response_time': 0,
                'total_requests': 0,
                'total_errors': 0,
                'success_rate': 100
            }
        }

    async def process_with_retry(self,
                                 messages: List[Dict],
                                 max_retries: int = 3,
                                 **kwargs):
        """Process a request with retry logic and error handling.

        Args:
            messages: List of message dictionaries for the conversation
            max_retries: Maximum number of attempts
            **kwargs: Additional parameters for the API call

        Returns:
            Chat completion response object

        Raises:
            OracleError: If every attempt fails
        """
        start_time = datetime.now()
        retries = 0
        last_error = None
        max_retries = max(1, max_retries)

        params = {
            'model': DEFAULT_MODEL,
            'temperature': 0.7,
            'max_completion_tokens': 4096,
            **{key: value for key, value in kwargs.items() if value is not None},
            'messages': messages,
        }

        while retries < max_retries:
            try:
                response = await asyncio.to_thread(self.client.chat.completions.create, **params)

                self.record_success(start_time)
                return response

            except Exception as e:
                retries += 1
                last_error = str(e)
                self.record_error(last_error)

                if retries == max_retries:
                    logger.error(f"Failed after {max_retries} retries: {last_error}")
                    raise OracleError(f"Failed after {max_retries} retries: {last_error}") from e

                # Exponential backoff
                wait_time = self.retry_base_delay ** retries
                logger.warning(f"Attempt {retries} failed. Waiting {wait_time} seconds before retry...")
                await asyncio.sleep(wait_time)

    def record_success(self, start_time: datetime):
        """Record successful request metrics."""
        duration = (datetime.now() - start_time).total_seconds()
        self._append_capped('requests', {
            'timestamp': datetime.now().isoformat(),
            'duration': duration,
            'status': 'success'
        })

        # Update aggregate performance metrics
        performance = self.metrics['performance']
        total_reqs = performance['total_requests'] + 1
        total_calls = total_reqs + performance['total_errors']
        performance.update({
            'avg_response_time': (performance['avg_response_time'] * (total_reqs - 1) + duration) / total_reqs,
            'total_requests': total_reqs,
            'success_rate': total_reqs / total_calls * 100
        })

    def record_error(self, error_message: str):
        """Record error metrics."""
        self._append_capped('errors', {
            'timestamp': datetime.now().isoformat(),
            'error': error_message
        })
        performance = self.metrics['performance']
        performance['total_errors'] += 1
        total_calls = performance['total_requests'] + performance['total_errors']
        performance['success_rate'] = performance['total_requests'] / total_calls * 100

    def _append_capped(self, key: str, entry: Dict):
        history = self.metrics[key]
        history.append(entry)
        del history[:-METRICS_HISTORY_LIMIT]
