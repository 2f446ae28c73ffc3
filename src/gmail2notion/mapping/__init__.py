"""Field mapping: type compatibility, transforms, payload building and resolution."""

from gmail2notion.mapping.builder import BuildResult, PropertyValueBuilder
from gmail2notion.mapping.compatibility import PropertyTypeCompatibility
from gmail2notion.mapping.engine import MappingEngine, ResolveResult, SaveResult
from gmail2notion.mapping.transformers import TransformerRegistry

__all__ = [
    "BuildResult",
    "MappingEngine",
    "PropertyTypeCompatibility",
    "PropertyValueBuilder",
    "ResolveResult",
    "SaveResult",
    "TransformerRegistry",
]
