"""
Entity Resolver Module
======================

Turns unprocessed candidate events into canonical baby records. Each
event either links to an existing baby of the same zoo and species
born within a window of days, creates a new baby when its evidence
scores high enough, or stays unlinked. Every event in a batch is
marked processed exactly once, whatever the outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from enum import Enum

from zoo_babies.config import ResolutionConfig
from zoo_babies.core.enums import SourceKind
from zoo_babies.core.schema import Baby, BabyEvent, BabyLink
from zoo_babies.db.base import Store
from zoo_babies.ingestion.normalizer import chunk
from zoo_babies.ingestion.signals import (
    extract_age_days,
    extract_individual_name,
    extract_species,
    infer_birthday,
    is_birth_announcement,
    parse_date_in_title,
)
from zoo_babies.ingestion.zoo_index import ZooIndex

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100
LINK_CHUNK_SIZE = 500


class ResolutionOutcome(str, Enum):
    """What happened to one event."""

    MATCHED = "matched"  # Linked to an existing baby
    CREATED = "created"  # New baby created and linked
    UNLINKED = "unlinked"  # Not enough evidence, kept as evidence only
    FAILED = "failed"  # Lookup or write failed; still marked processed


@dataclass
class EventResolution:
    """Decision for one event."""

    event_id: str
    outcome: ResolutionOutcome
    baby_id: str | None = None
    birthday: date | None = None
    zoo_id: str | None = None
    score: int | None = None


@dataclass
class ResolveStats:
    """Counters for one resolver batch."""

    events: int = 0
    matched: int = 0
    created: int = 0
    unlinked: int = 0
    failed: int = 0
    links_written: int = 0
    errors: list[str] = field(default_factory=list)

    def record(self, resolution: EventResolution) -> None:
        """Count one event's outcome."""
        if resolution.outcome == ResolutionOutcome.MATCHED:
            self.matched += 1
        elif resolution.outcome == ResolutionOutcome.CREATED:
            self.created += 1
        elif resolution.outcome == ResolutionOutcome.UNLINKED:
            self.unlinked += 1
        else:
            self.failed += 1


def score_creation(
    source_kind: SourceKind | str | None,
    is_birth: bool,
    zoo_known: bool,
    has_age_or_date: bool,
    config: ResolutionConfig,
) -> int:
    """
    Confidence that an unmatched event describes a real new baby.

    Args:
        source_kind: Kind of the source the event came from
        is_birth: Title is a birth/naming announcement
        zoo_known: A zoo was tagged or guessed
        has_age_or_date: Title states an age in days or a date
        config: Weights

    Returns:
        Integer score
    """
    score = 0
    if source_kind is not None:
        kind = source_kind.value if isinstance(source_kind, SourceKind) else str(source_kind)
        score += config.kind_weights.get(kind, 0)
    if is_birth:
        score += config.birth_weight
    if zoo_known:
        score += config.zoo_weight
    if has_age_or_date:
        score += config.date_weight
    return score


def should_create(score: int, threshold: int) -> bool:
    """Creation policy: accept scores at or above the threshold."""
    return score >= threshold


def display_name(name: str | None, species: str | None) -> str:
    """Name for a new baby, falling back to placeholders."""
    if name and name.strip():
        return name.strip()[:MAX_NAME_LENGTH]
    if species:
        return f"赤ちゃん（{species}）"[:MAX_NAME_LENGTH]
    return "赤ちゃん"


class EntityResolver:
    """
    Resolves candidate events to canonical babies.

    Matching is exact on zoo and species and approximate on birthday
    (within ``window_days``). Creation is gated by ``score_creation``.
    """

    def __init__(self, store: Store, config: ResolutionConfig | None = None) -> None:
        """
        Initialize the resolver.

        Args:
            store: Persisted store
            config: Batch size, window and scoring weights
        """
        self.store = store
        self.config = config or ResolutionConfig()

    async def load_index(self) -> ZooIndex:
        """Build the zoo index from the store."""
        zoos = await self.store.list_zoos()
        sources = await self.store.list_zoo_sources()
        return ZooIndex.build(zoos, sources)

    async def resolve_event(self, event: BabyEvent, index: ZooIndex) -> EventResolution:
        """
        Decide one event: match, create, or leave unlinked.

        Babies are created inline since the link needs the new id; links
        themselves are returned to the caller for batched writing.
        """
        title = event.title or ""
        birthday = infer_birthday(title, event.published_at)
        zoo_id = event.zoo_id or index.guess_zoo(title, event.url)

        species = event.species
        if not species:
            found = extract_species(title)
            species = found.canonical if found else None

        resolution = EventResolution(
            event_id=event.id or "",
            outcome=ResolutionOutcome.UNLINKED,
            birthday=birthday,
            zoo_id=zoo_id,
        )

        if zoo_id and species and birthday:
            window = timedelta(days=self.config.window_days)
            match = await self.store.find_matching_baby(zoo_id, species, birthday - window, birthday + window)
            if match is not None and match.id:
                resolution.outcome = ResolutionOutcome.MATCHED
                resolution.baby_id = match.id
                if not match.thumbnail_url and event.thumbnail_url:
                    try:
                        await self.store.backfill_baby_thumbnail(match.id, event.thumbnail_url)
                    except Exception as e:
                        logger.warning(f"Thumbnail backfill for baby {match.id} failed: {e}")
                return resolution

        has_age = event.signal_age_days is not None or extract_age_days(title) is not None
        has_date = parse_date_in_title(title, event.published_at) is not None
        resolution.score = score_creation(
            event.source_kind,
            is_birth=event.signal_birth or is_birth_announcement(title),
            zoo_known=zoo_id is not None,
            has_age_or_date=has_age or has_date,
            config=self.config,
        )

        if not should_create(resolution.score, self.config.creation_threshold):
            return resolution

        baby = await self.store.insert_baby(
            Baby(
                name=display_name(event.signal_name or extract_individual_name(title), species),
                species=species,
                birthday=birthday,
                thumbnail_url=event.thumbnail_url,
                zoo_id=zoo_id,
            )
        )
        logger.info(f"Created baby {baby.id} '{baby.name}' from event {event.id}")
        resolution.outcome = ResolutionOutcome.CREATED
        resolution.baby_id = baby.id
        return resolution

    async def resolve_batch(self, now: datetime | None = None) -> ResolveStats:
        """
        Resolve one batch of unprocessed events.

        Loading the batch or the zoo index raises; nothing is marked
        processed in that case. After that, per-event failures are
        recorded and the event is still marked processed.
        """
        stats = ResolveStats()

        events = await self.store.list_unprocessed_events(self.config.batch_size)
        index = await self.load_index()
        stats.events = len(events)
        if not events:
            return stats

        links: list[BabyLink] = []
        processed_ids: list[str] = []

        for event in events:
            if not event.id:
                continue
            processed_ids.append(event.id)
            try:
                resolution = await self.resolve_event(event, index)
            except Exception as e:
                logger.exception(f"Failed to resolve event {event.id}")
                stats.errors.append(f"{event.id}: {e}")
                resolution = EventResolution(event_id=event.id, outcome=ResolutionOutcome.FAILED)

            stats.record(resolution)
            if resolution.baby_id:
                links.append(BabyLink(event_id=event.id, baby_id=resolution.baby_id))

        for part in chunk(links, LINK_CHUNK_SIZE):
            try:
                stats.links_written += await self.store.insert_links(part)
            except Exception as e:
                logger.error(f"Writing {len(part)} baby links failed: {e}")
                stats.errors.append(f"links: {e}")

        stamp = now or datetime.now(UTC)
        for part in chunk(processed_ids, self.config.processed_chunk_size):
            try:
                await self.store.mark_events_processed(part, stamp)
            except Exception as e:
                logger.error(f"Marking {len(part)} events processed failed: {e}")
                stats.errors.append(f"processed_at: {e}")

        return stats
