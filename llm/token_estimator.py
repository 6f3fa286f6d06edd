"""
Token Estimator for ledger accounting.

Used when a provider gives no usage figure (failed attempts), so every
ledger row carries either a provider count or this documented estimate.
"""

import logging
from typing import Dict, List, Optional

import tiktoken

logger = logging.getLogger(__name__)

# Per-message framing overhead of the chat format (role markers, separators)
MESSAGE_OVERHEAD_TOKENS = 4
REPLY_PRIMER_TOKENS = 3


class TokenEstimator:
    """
    Estimates token count for text.

    - "openai": tiktoken (cl100k_base), loaded on first use
    - anything else: ~4 chars/token heuristic
    """

    def __init__(self, provider: str = "openai"):
        """
        Args:
            provider: "openai" (default) or "heuristic"
        """
        self.provider = provider.lower()
        self._encoding: Optional[tiktoken.Encoding] = None
        self._encoding_failed = False

    def _get_encoding(self) -> Optional[tiktoken.Encoding]:
        if self.provider != "openai" or self._encoding_failed:
            return None
        if self._encoding is None:
            try:
                self._encoding = tiktoken.get_encoding("cl100k_base")
                logger.info("TokenEstimator: using tiktoken (cl100k_base)")
            except Exception as e:
                # BPE files are fetched on first use; offline hosts degrade to the heuristic
                logger.warning(f"tiktoken encoding unavailable, using heuristic: {e}")
                self._encoding_failed = True
                return None
        return self._encoding

    def estimate(self, text: str) -> int:
        """
        Estimate token count for text.

        Args:
            text: Input text

        Returns:
            Estimated token count
        """
        if not text:
            return 0

        encoding = self._get_encoding()
        if encoding is not None:
            return len(encoding.encode(text))

        return max(1, len(text) // 4)

    def estimate_messages(self, messages: List[Dict[str, str]]) -> int:
        """Estimate prompt tokens for a list of chat messages."""
        if not messages:
            return 0
        total = REPLY_PRIMER_TOKENS
        for msg in messages:
            total += MESSAGE_OVERHEAD_TOKENS + self.estimate(msg.get("content", ""))
        return total
