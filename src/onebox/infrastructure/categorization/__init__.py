"""Message categorization."""

from onebox.infrastructure.categorization.keywords import CategorizationResult, KeywordCategorizer, classify

__all__ = [
    "CategorizationResult",
    "KeywordCategorizer",
    "classify",
]
