"""
Core module - configuration, logging, errors, shared typing.

Components:
- config: Settings management via pydantic-settings
- logging: Structured logging setup
- errors: Exception taxonomy shared by all layers
"""

from recall.core.config import Settings
from recall.core.errors import ParseError, ProviderError, RecallError

__all__ = ["Settings", "RecallError", "ProviderError", "ParseError"]
