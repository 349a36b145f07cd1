"""
Token estimation for context budgeting
"""

import math
from abc import ABC, abstractmethod
from typing import Optional

from permsearch.core.config import settings


class TokenEstimator(ABC):
    """Counts tokens the way the generator will"""

    @abstractmethod
    def count(self, text: str) -> int:
        """Number of tokens in text"""


class HeuristicTokenEstimator(TokenEstimator):
    """About four characters per token"""

    def __init__(self, chars_per_token: float = 4.0):
        self.chars_per_token = chars_per_token

    def count(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)


class TiktokenEstimator(TokenEstimator):
    """Exact counts with a tiktoken encoding"""

    def __init__(self, encoding_name: Optional[str] = None):
        import tiktoken

        self.encoding_name = encoding_name or settings.TIKTOKEN_ENCODING
        self._encoding = tiktoken.get_encoding(self.encoding_name)

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._encoding.encode(text, disallowed_special=()))


_estimator: Optional[TokenEstimator] = None


def get_token_estimator() -> TokenEstimator:
    """Estimator selected by TOKEN_ESTIMATOR"""
    global _estimator
    if _estimator is None:
        if settings.TOKEN_ESTIMATOR == "tiktoken":
            _estimator = TiktokenEstimator()
        else:
            _estimator = HeuristicTokenEstimator()
    return _estimator
