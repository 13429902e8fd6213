"""
Amazon Bedrock embedding client used for semantic neighbour discovery.
"""

import json
import random
import time
from typing import Any, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockEmbedError(Exception):
    """Custom exception for Bedrock embedding errors."""
    pass


class BedrockEmbed:
    """Amazon Bedrock embedding client with retry logic and error handling."""

    def __init__(self, config: BedrockEmbedConfig, runtime_client: Optional[Any] = None):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
            runtime_client: Pre-built bedrock-runtime client, mainly for tests
        """
        self.config = config
        self.model_id = config.model_id
        self.dimension = config.dimension

        self.bedrock = runtime_client or boto3.client(service_name='bedrock-runtime', region_name=config.region)

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _call_with_retry(self, data: dict) -> dict:
        """
        Make a Bedrock API call with retry logic.

        Raises:
            BedrockEmbedError: If all retry attempts fail
        """
        body = json.dumps(data)

        for attempt in range(self.config.retry_attempts):
            try:
                response = self.bedrock.invoke_model(body=body,
                                                     modelId=self.model_id,
                                                     accept='application/json',
                                                     contentType='application/json')
                return json.loads(response.get('body').read())

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock Embed: {e}')
                raise BedrockEmbedError(f'Unexpected Bedrock Embed error: {e}')

        raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts')

    def embed(self, text: str, purpose: str = 'document') -> List[float]:
        """
        Generate an embedding for a vent or journal text.

        Args:
            text: Text to embed
            purpose: 'document' when indexing, 'query' when searching

        Returns:
            Embedding vector of the configured dimension

        Raises:
            BedrockEmbedError: If embedding generation fails or the text is empty
        """
        if not text or not text.strip():
            raise BedrockEmbedError('Cannot embed empty text')

        model = self.model_id.lower()
        if 'titan' in model:
            response = self._call_with_retry({'inputText': text, 'dimensions': self.dimension})
            embedding = response.get('embedding')
        elif 'cohere' in model:
            input_type = 'search_query' if purpose == 'query' else 'search_document'
            response = self._call_with_retry({'input_type': input_type, 'texts': [text]})
            embeddings = response.get('embeddings') or []
            embedding = embeddings[0] if embeddings else None
        else:
            raise BedrockEmbedError(f'Unsupported embedding model: {self.model_id}')

        if not embedding or len(embedding) != self.dimension:
            raise BedrockEmbedError(f'Embedding response had unexpected shape for model {self.model_id}')
        return embedding

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock embedding service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            return len(self.embed('health check')) == self.dimension

        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
