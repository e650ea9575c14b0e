"""Decode schemas for the two upstream sources.

The catalog (TMDB) speaks snake_case, so its schemas map JSON keys to
attribute names by convention. The ratings source (OMDb) speaks PascalCase
with a few irregular keys (``imdbID``, ``totalSeasons``), so its schemas carry
an explicit alias for every field.
"""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field

from .errors import UpstreamError
from .models import EpisodeRecord, MediaKind, MediaRecord, RatingRecord
from .utils import parse_int


class UpstreamPayload(BaseModel):
    """Base for payloads that carry an in-band success indicator."""

    def raise_for_upstream(self) -> None:
        """Raise :class:`UpstreamError` when the payload reports failure."""

    @classmethod
    def envelope(cls) -> type[UpstreamPayload]:
        """Return the ancestor schema that holds only the success indicator.

        Failure bodies carry just the indicator and a message, so they decode
        as the envelope even when ``cls`` has required fields.
        """

        for klass in cls.__mro__:
            if UpstreamPayload in klass.__bases__:
                return klass
        return cls


# --------------------------------------------------------------------------- #
# Catalog source
# --------------------------------------------------------------------------- #


class CatalogSchema(UpstreamPayload):
    model_config = ConfigDict(extra="ignore")

    success: bool | None = None
    status_message: str | None = None

    def raise_for_upstream(self) -> None:
        if self.success is False:
            raise UpstreamError(self.status_message)


def catalog_kind(media_type: str | None) -> MediaKind | None:
    if media_type == "movie":
        return "movie"
    if media_type == "tv":
        return "series"
    return None


class CatalogItem(CatalogSchema):
    id: int
    media_type: str | None = None
    title: str | None = None
    name: str | None = None
    overview: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    profile_path: str | None = None
    vote_average: float = 0.0
    vote_count: int = 0
    genre_ids: list[int] = Field(default_factory=list)
    release_date: str | None = None
    first_air_date: str | None = None
    character: str | None = None

    @property
    def inferred_kind(self) -> MediaKind:
        kind = catalog_kind(self.media_type)
        if kind is not None:
            return kind
        return "series" if self.name is not None and self.title is None else "movie"

    def to_record(self, kind: MediaKind | None = None) -> MediaRecord:
        return MediaRecord(
            id=self.id,
            kind=kind or self.inferred_kind,
            title=self.title or self.name,
            overview=self.overview,
            release_date=self.release_date or self.first_air_date,
            poster_path=self.poster_path,
            backdrop_path=self.backdrop_path,
            vote_average=self.vote_average,
            vote_count=self.vote_count,
            genre_ids=list(self.genre_ids),
        )


class CatalogPage(CatalogSchema):
    page: int = 1
    results: list[CatalogItem] = Field(default_factory=list)
    total_pages: int = 0
    total_results: int = 0


class Genre(BaseModel):
    id: int
    name: str


class ExternalIds(BaseModel):
    model_config = ConfigDict(extra="ignore")

    imdb_id: str | None = None


class CollectionRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None


class CatalogDetail(CatalogItem):
    genres: list[Genre] = Field(default_factory=list)
    runtime: int | None = None
    number_of_seasons: int | None = None
    number_of_episodes: int | None = None
    imdb_id: str | None = None
    external_ids: ExternalIds | None = None
    budget: int | None = None
    revenue: int | None = None
    belongs_to_collection: CollectionRef | None = None

    @property
    def linking_id(self) -> str | None:
        external = self.external_ids.imdb_id if self.external_ids else None
        return external or self.imdb_id or None

    def to_record(self, kind: MediaKind | None = None) -> MediaRecord:
        record = super().to_record(kind)
        record.genre_ids = [genre.id for genre in self.genres] or record.genre_ids
        record.linking_id = self.linking_id
        record.total_seasons = self.number_of_seasons
        record.runtime_minutes = self.runtime
        record.budget = self.budget
        record.revenue = self.revenue
        if self.belongs_to_collection is not None:
            record.collection_id = self.belongs_to_collection.id
        return record


class CastMember(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    character: str | None = None
    profile_path: str | None = None
    order: int = 0


class CrewMember(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    job: str | None = None
    department: str | None = None
    profile_path: str | None = None


class Credits(CatalogSchema):
    id: int
    cast: list[CastMember] = Field(default_factory=list)
    crew: list[CrewMember] = Field(default_factory=list)


class Collection(CatalogSchema):
    id: int
    name: str
    overview: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    parts: list[CatalogItem] = Field(default_factory=list)

    def ordered_parts(self) -> list[MediaRecord]:
        """Return the franchise entries ordered by release date."""

        records = [part.to_record("movie") for part in self.parts]
        return sorted(records, key=lambda record: record.release_date or "9999")


class PersonCredits(CatalogSchema):
    id: int
    cast: list[CatalogItem] = Field(default_factory=list)


# --------------------------------------------------------------------------- #
# Ratings source
# --------------------------------------------------------------------------- #


class RatingsSchema(UpstreamPayload):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    response: str | None = Field(default=None, alias="Response")
    error: str | None = Field(default=None, alias="Error")

    @property
    def is_success(self) -> bool:
        return (self.response or "").strip().lower() == "true"

    def raise_for_upstream(self) -> None:
        if not self.is_success:
            raise UpstreamError(self.error)


class RatingEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source: str = Field(alias="Source")
    value: str = Field(alias="Value")


class RatingsDetail(RatingsSchema):
    title: str | None = Field(default=None, alias="Title")
    year: str | None = Field(default=None, alias="Year")
    rated: str | None = Field(default=None, alias="Rated")
    released: str | None = Field(default=None, alias="Released")
    runtime: str | None = Field(default=None, alias="Runtime")
    genre: str | None = Field(default=None, alias="Genre")
    director: str | None = Field(default=None, alias="Director")
    writer: str | None = Field(default=None, alias="Writer")
    actors: str | None = Field(default=None, alias="Actors")
    plot: str | None = Field(default=None, alias="Plot")
    language: str | None = Field(default=None, alias="Language")
    country: str | None = Field(default=None, alias="Country")
    awards: str | None = Field(default=None, alias="Awards")
    poster: str | None = Field(default=None, alias="Poster")
    ratings: list[RatingEntry] = Field(default_factory=list, alias="Ratings")
    metascore: str | None = Field(default=None, alias="Metascore")
    imdb_rating: str | None = Field(default=None, alias="imdbRating")
    imdb_votes: str | None = Field(default=None, alias="imdbVotes")
    imdb_id: str | None = Field(default=None, alias="imdbID")
    type: str | None = Field(default=None, alias="Type")
    total_seasons: str | None = Field(default=None, alias="totalSeasons")
    box_office: str | None = Field(default=None, alias="BoxOffice")

    @property
    def season_count(self) -> int | None:
        count = parse_int(self.total_seasons)
        if count is None or count <= 0:
            return None
        return count

    def rating_records(self) -> list[RatingRecord]:
        return [RatingRecord(source=entry.source, value=entry.value) for entry in self.ratings]


class EpisodeEntry(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    title: str = Field(default="", alias="Title")
    released: str | None = Field(default=None, alias="Released")
    episode: str = Field(alias="Episode")
    imdb_rating: str = Field(default="N/A", alias="imdbRating")
    imdb_id: str | None = Field(default=None, alias="imdbID")


class SeasonListing(RatingsSchema):
    NOT_AVAILABLE: ClassVar[str] = "N/A"

    title: str | None = Field(default=None, alias="Title")
    season: str | None = Field(default=None, alias="Season")
    total_seasons: str | None = Field(default=None, alias="totalSeasons")
    episodes: list[EpisodeEntry] = Field(default_factory=list, alias="Episodes")

    def episode_records(self, fallback_season: int) -> list[EpisodeRecord]:
        """Convert listing entries, keeping episodes whose rating is unavailable.

        Entries whose episode number is not numeric are dropped.
        """

        season_number = parse_int(self.season) or fallback_season
        records: list[EpisodeRecord] = []
        for entry in self.episodes:
            number = parse_int(entry.episode)
            if number is None:
                continue
            records.append(
                EpisodeRecord(
                    season=season_number,
                    episode=number,
                    title=entry.title,
                    rating=entry.imdb_rating or self.NOT_AVAILABLE,
                    linking_id=entry.imdb_id,
                    released=entry.released,
                )
            )
        return records
