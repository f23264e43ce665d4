"""
Zoo Babies Ingestion Pipeline
=============================

Crawls feeds, official sites and Wikipedia, turns items into candidate
events, and resolves events to canonical baby records.

Pipeline Stages:
1. Select - least recently checked sources, bounded per run
2. Fetch - Crawler with a descriptive User-Agent and bounded retries
3. Parse - RSS/Atom, YouTube Data API, Open Graph
4. Normalize - canonical URLs and SHA-256 fingerprints
5. Extract - birth keywords, species, names, ages, birthdays
6. Persist - batched idempotent upserts keyed on URL
7. Resolve - match or create babies and link events (separate run)
"""

from zoo_babies.ingestion.crawler import (
    Crawler,
    FetchError,
    FetchResult,
)
from zoo_babies.ingestion.jobs import (
    JobResult,
    UnknownJobError,
    WorkerSettings,
    enqueue_job,
    run_feeds_job,
    run_job,
    run_resolve_job,
    run_sites_job,
    run_zoos_job,
)
from zoo_babies.ingestion.normalizer import (
    fingerprint,
    normalize_url,
)
from zoo_babies.ingestion.resolver import (
    EntityResolver,
    ResolutionOutcome,
    ResolveStats,
    score_creation,
    should_create,
)
from zoo_babies.ingestion.zoo_index import ZooIndex

__all__ = [
    # Crawler
    "Crawler",
    "FetchError",
    "FetchResult",
    # Normalizer
    "fingerprint",
    "normalize_url",
    # Zoo index
    "ZooIndex",
    # Resolver
    "EntityResolver",
    "ResolutionOutcome",
    "ResolveStats",
    "score_creation",
    "should_create",
    # Jobs
    "JobResult",
    "UnknownJobError",
    "WorkerSettings",
    "enqueue_job",
    "run_feeds_job",
    "run_job",
    "run_resolve_job",
    "run_sites_job",
    "run_zoos_job",
]
