"""Static advent-calendar content: missions, story arcs, badges, symbols."""

from .loader import Catalog, CatalogError, get_catalog, load_catalog, validate_catalog
from .models import (
    ArcMembership,
    Badge,
    BadgeCondition,
    BonusQuest,
    DecryptionChallenge,
    Mission,
    Requirements,
    RevealSet,
    StoryArc,
    SymbolDefinition,
    normalize_code,
)

__all__ = [
    "ArcMembership",
    "Badge",
    "BadgeCondition",
    "BonusQuest",
    "Catalog",
    "CatalogError",
    "DecryptionChallenge",
    "Mission",
    "Requirements",
    "RevealSet",
    "StoryArc",
    "SymbolDefinition",
    "get_catalog",
    "load_catalog",
    "normalize_code",
    "validate_catalog",
]
