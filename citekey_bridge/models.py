"""
Data Models for the Citekey Bridge
==================================
Core data structures shared by the parser, resolver, dispatcher,
citation processor and formatter.
"""

import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from .exceptions import AmbiguousError, NotFoundError


JSON_MEDIA_TYPE = "application/json; charset=UTF-8"
TEXT_MEDIA_TYPE = "text/plain; charset=UTF-8"


class KeyScheme(str, Enum):
    """Key schemes a client may use to address an item."""
    EASYKEY = "easykey"   # doe:2005first or DoeFirst2005
    KEY = "key"           # <libraryID>_<itemKey>
    CITEKEY = "citekey"   # Better BibTeX citation key


class SearchMethod(str, Enum):
    """Free-text search modes understood by the store."""
    TITLE_CREATOR_YEAR = "titleCreatorYear"
    FIELDS = "fields"
    EVERYTHING = "everything"


def fold_diacritics(text: str) -> str:
    """Lower-case ``text`` and strip combining marks."""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return unicodedata.normalize("NFC", stripped).casefold()


@dataclass(frozen=True)
class StructuredKey:
    """
    A parsed easy key.

    Attributes:
        creators: Creator surname tokens, NFC normalized and lower-cased
        year: Exactly four digits
        title: Optional short-title token, lower-cased
    """
    creators: Tuple[str, ...]
    year: str
    title: Optional[str] = None

    def __post_init__(self):
        if not self.creators:
            raise ValueError("StructuredKey needs at least one creator")
        if len(self.year) != 4 or not self.year.isdigit():
            raise ValueError(f"Invalid easy key year: {self.year!r}")

    @property
    def folded(self) -> "StructuredKey":
        """Diacritic-insensitive copy, for lenient comparisons."""
        return StructuredKey(
            creators=tuple(fold_diacritics(c) for c in self.creators),
            year=self.year,
            title=fold_diacritics(self.title) if self.title else None,
        )

    def __str__(self) -> str:
        return f"{'_'.join(self.creators)}:{self.year}{self.title or ''}"


@dataclass(frozen=True)
class KeyPrefix:
    """An incomplete easy key typed by a user, used for completion."""
    creators: Tuple[str, ...]
    year: str = ""
    title: str = ""


@dataclass(frozen=True)
class ItemHandle:
    """Opaque reference to one record in the library store."""
    library_id: int
    key: str

    @property
    def library_key(self) -> str:
        return f"{self.library_id}_{self.key}"

    def __str__(self) -> str:
        return self.library_key


@dataclass(frozen=True)
class Collection:
    """A named collection as reported by the store."""
    library_id: int
    key: str
    name: str
    parent_key: Optional[str] = None


@dataclass(frozen=True)
class SearchCondition:
    """One store search condition, e.g. ``creator contains doe``."""
    field: str
    operator: str
    value: str


@dataclass(frozen=True)
class SearchQuery:
    """A conjunction of conditions built by the resolver.

    Attributes:
        conditions: All must hold for an item to match
        library_id: Restrict the search to one library (None = store default)
    """
    conditions: Tuple[SearchCondition, ...]
    library_id: Optional[int] = None


@dataclass
class ResolutionOutcome:
    """
    Result of resolving one key.

    Exactly one of three shapes: found (``items`` holds one or more
    handles), not found (``items`` empty) or ambiguous (``count`` > 1).
    NotFound and Ambiguous keep the original query for error messages.
    """
    query: str
    scheme: KeyScheme
    items: List[ItemHandle] = field(default_factory=list)
    count: int = 0

    @classmethod
    def classify(
        cls, query: str, scheme: KeyScheme, items: List[ItemHandle]
    ) -> "ResolutionOutcome":
        """Build an outcome from raw store results."""
        if len(items) > 1:
            return cls(query=query, scheme=scheme, count=len(items))
        return cls(query=query, scheme=scheme, items=list(items), count=len(items))

    @property
    def found(self) -> bool:
        return self.count >= 1 and bool(self.items)

    @property
    def ambiguous(self) -> bool:
        return self.count > 1

    def unwrap(self) -> List[ItemHandle]:
        """Return the found items, or raise the matching error."""
        if self.ambiguous:
            raise AmbiguousError(self.query, self.count)
        if not self.found:
            if self.scheme == KeyScheme.EASYKEY:
                raise NotFoundError(self.query)
            raise NotFoundError(self.query, f"{self.query} not found")
        return self.items


@dataclass
class CitationGroup:
    """
    One citation cluster of a bibliography request.

    Attributes:
        citation_items: Request dicts; after resolution each carries ``id``
        properties: Group-level data such as ``noteIndex``, passed through
    """
    citation_items: List[Dict[str, Any]]
    properties: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "citationItems": self.citation_items,
            "properties": self.properties,
        }


class ResponseTriple(NamedTuple):
    """(status, content type, body): the only shape leaving the core."""
    status: int
    content_type: str
    body: str
