from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import UTC, date, datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from scholarfeed.models.enums import Priority, SourceKind

ALL_REGIONS = "All"
NO_DEADLINE_DAYS = 365

# Tags owned by the merge engine; recomputed on every merge.
DERIVED_TAGS = frozenset({"high-value", "urgent"})
SAMPLE_TAG = "sample"


def _collapse(text: str) -> str:
    return " ".join(text.lower().split())


def dedup_key(name: str, provider: str) -> tuple[str, str]:
    """Natural key shared by every adapter for the same real-world listing."""
    return _collapse(name), _collapse(provider)


def listing_id(name: str, provider: str) -> str:
    """Deterministic listing id derived from the natural key."""
    key_name, key_provider = dedup_key(name, provider)
    digest = hashlib.sha256(f"{key_name}|{key_provider}".encode()).hexdigest()[:16]
    return f"sch-{digest}"


def days_until(deadline: date | None, today: date | None = None) -> int:
    """Whole days from *today* to *deadline*; negative once it has passed."""
    if deadline is None:
        return NO_DEADLINE_DAYS
    today = today or datetime.now(UTC).date()
    return (deadline - today).days


class Listing(BaseModel):
    """A single normalized scholarship / aid listing."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    name: str = Field(min_length=1)
    provider: str = Field(min_length=1)
    amount: float | None = Field(default=None, ge=0)
    category: str = "General"
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    eligible_regions: list[str] = Field(default_factory=lambda: [ALL_REGIONS])
    min_grade: int = 1
    max_grade: int = 12
    deadline: date | None = None
    requirements: list[str] = Field(default_factory=list)
    application_url: str = ""
    source_kind: SourceKind
    priority: Priority = Priority.LOW
    last_updated: datetime = Field(default_factory=lambda: datetime.now(UTC))
    is_live: bool = True

    @field_validator("name", "provider", "category", "description", "application_url")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("tags")
    @classmethod
    def _normalise_tags(cls, value: list[str]) -> list[str]:
        return sorted({t.strip().lower() for t in value if t and t.strip()})

    @field_validator("eligible_regions")
    @classmethod
    def _normalise_regions(cls, value: list[str]) -> list[str]:
        regions = [r.strip() for r in value if r and r.strip()]
        if not regions or any(r.lower() == "all" for r in regions):
            return [ALL_REGIONS]
        return regions

    @model_validator(mode="after")
    def _order_grades(self) -> Listing:
        if self.min_grade > self.max_grade:
            self.min_grade, self.max_grade = self.max_grade, self.min_grade
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def id(self) -> str:
        return listing_id(self.name, self.provider)

    # -- Derived helpers ------------------------------------------------------

    @property
    def dedup_key(self) -> tuple[str, str]:
        return dedup_key(self.name, self.provider)

    @property
    def is_actionable(self) -> bool:
        return bool(self.application_url)

    def days_left(self, today: date | None = None) -> int:
        return days_until(self.deadline, today)

    def matches_region(self, region: str | None) -> bool:
        if not region:
            return True
        wanted = region.strip().lower()
        return any(r.lower() in (wanted, "all") for r in self.eligible_regions)

    def fingerprint(self) -> str:
        """Content checksum over the tracked fields.

        Excludes ``last_updated``, ``is_live``, ``priority`` and derived tags,
        which change without the upstream content changing.
        """
        content_fields = [
            _collapse(self.name),
            _collapse(self.provider),
            "" if self.amount is None else f"{self.amount:.2f}",
            self.category,
            self.description,
            ",".join(sorted(r.lower() for r in self.eligible_regions)),
            f"{self.min_grade}-{self.max_grade}",
            self.deadline.isoformat() if self.deadline else "",
            "|".join(sorted(self.requirements)),
            self.application_url,
            ",".join(t for t in self.tags if t not in DERIVED_TAGS),
        ]
        return hashlib.sha256("\x1f".join(content_fields).encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class CacheKey:
    """Query scope of one cached feed."""

    region: str | None = None
    category: str | None = None

    @classmethod
    def of(cls, region: str | None = None, category: str | None = None) -> CacheKey:
        return cls(region=_normalise_scope(region), category=_normalise_scope(category))

    def __str__(self) -> str:
        return f"region={self.region or '*'} category={self.category or '*'}"


def _normalise_scope(value: str | None) -> str | None:
    if value is None:
        return None
    value = " ".join(value.split()).casefold()
    return value or None
