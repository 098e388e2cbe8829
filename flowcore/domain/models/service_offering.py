"""Catalog entries and periodic job reports."""

from pydantic import BaseModel, ConfigDict, Field


class ServiceOffering(BaseModel):
    """A purchasable service listed in the catalog."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    keywords: list[str] = Field(default_factory=list)
    platforms: list[str] = Field(default_factory=list)
    active: bool = True

    model_config = ConfigDict(frozen=True)


class SweepReport(BaseModel):
    """Counters produced by one run of a periodic sweep."""

    job: str
    found: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    processed_ids: list[str] = Field(default_factory=list)
