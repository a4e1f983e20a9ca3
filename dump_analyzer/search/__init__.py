"""Method-name search."""

from .method_index import MethodSearchIndex, contains_wildcard, wildcard_to_regex

__all__ = ["MethodSearchIndex", "contains_wildcard", "wildcard_to_regex"]
