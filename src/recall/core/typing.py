"""Shared typing aliases used across modules."""

from typing import Any, TypeAlias

JSONDict: TypeAlias = dict[str, Any]
MessageDict: TypeAlias = dict[str, Any]
Vector: TypeAlias = list[float]
MetadataFilter: TypeAlias = dict[str, Any]
