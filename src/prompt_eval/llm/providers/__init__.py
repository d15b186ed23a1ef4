"""Provider adapter implementations.

Each module holds one adapter plus its model catalog. Adapters are
registered by ``prompt_eval.llm.factory.create_default_registry``.
"""

from .base import BaseAdapter, classify_error
from .http import HTTPAdapter

__all__ = ["BaseAdapter", "HTTPAdapter", "classify_error"]
