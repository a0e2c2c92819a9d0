"""
mnemo Entity Extraction -- pluggable provider with a regex fallback.

The regex fallback is deliberately shallow: capitalised phrases, ISO and
long-form dates, ticket-style project keys, URLs, and single capitalised
words (low confidence). It never proposes relationships.
"""

import logging
import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger("mnemo.extractor")


class EntityType(str, Enum):
    PERSON = "person"
    PROJECT = "project"
    DECISION = "decision"
    TASK = "task"
    DATE = "date"
    PLACE = "place"
    ORGANIZATION = "organization"
    TOPIC = "topic"


ENTITY_TYPE_VALUES = frozenset(t.value for t in EntityType)


@dataclass
class ExtractedEntity:
    name: str
    type: str
    confidence: float
    description: Optional[str] = None
    start_offset: Optional[int] = None
    end_offset: Optional[int] = None


@dataclass
class ExtractedRelationship:
    source_name: str
    target_name: str
    type: str


@dataclass
class ExtractionResult:
    entities: List[ExtractedEntity] = field(default_factory=list)
    relationships: List[ExtractedRelationship] = field(default_factory=list)
    source_text: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ExtractionProvider(Protocol):
    async def extract_entities(self, text: str) -> ExtractionResult: ...


_MONTHS = (
    "January|February|March|April|May|June|July|August|September|October|November|December"
)

# Applied in order; an entity is kept once per (type, lowercased name)
_PATTERNS = [
    (EntityType.PERSON, re.compile(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)+)\b")),
    (EntityType.DATE, re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")),
    (EntityType.DATE, re.compile(r"\b((?:" + _MONTHS + r")\s+\d{1,2},?\s+\d{4})\b")),
    (EntityType.PROJECT, re.compile(r"\b([A-Z]{2,}-\d+)\b")),
    (EntityType.TOPIC, re.compile(r"\b(https?://[^\s]+)\b")),
    (EntityType.TOPIC, re.compile(r"\b([A-Z][a-z]{2,})\b")),
]

STOPWORDS = frozenset(
    """
    The This That When Where What How Here There Some Each Every Many Most
    After Before During About From Into With Then Also Just Like Even More
    Much Very Such Only Other Another Both Because Since While Until Though
    Although However Therefore Otherwise Instead Perhaps Maybe Already Always
    Never Sometimes Often Usually Still Yet
    """.split()
)


def regex_extract(text: str) -> ExtractionResult:
    entities: List[ExtractedEntity] = []
    seen = set()

    for etype, pattern in _PATTERNS:
        for match in pattern.finditer(text):
            name = match.group(1)
            is_url = "://" in name
            if etype is EntityType.TOPIC and not is_url and name in STOPWORDS:
                continue
            key = f"{etype.value}:{name.lower()}"
            if key in seen:
                continue
            seen.add(key)
            single_word = etype is EntityType.TOPIC and not is_url and " " not in name
            entities.append(
                ExtractedEntity(
                    name=name,
                    type=etype.value,
                    confidence=0.3 if single_word else 0.5,
                    start_offset=match.start(),
                    end_offset=match.end(),
                )
            )

    return ExtractionResult(entities=entities, relationships=[], source_text=text)


class EntityExtractor:
    """Extracts with the configured provider, falling back to regex_extract."""

    def __init__(self, provider: Optional[ExtractionProvider] = None):
        self.provider = provider

    async def extract(self, text: str) -> ExtractionResult:
        if self.provider is not None:
            try:
                return await self.provider.extract_entities(text)
            except Exception as e:
                logger.warning("Extraction provider failed, using regex fallback: %s", e)
        return regex_extract(text)
