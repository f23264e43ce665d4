"""
Zoo Index Module
================

Lookup structure used by the resolver to guess which zoo an item is
about. Built from explicit inputs once per resolution batch.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable
from dataclasses import dataclass, field

from zoo_babies.core.enums import SourceKind
from zoo_babies.core.schema import Source, Zoo
from zoo_babies.ingestion.normalizer import domain_of

MIN_VARIANT_LENGTH = 3

_PAREN_RE = re.compile(r"\s*[(（][^)）]*[)）]\s*")


def normalize_name(text: str | None) -> str:
    """Lowercase and drop whitespace, punctuation and symbols."""
    text = unicodedata.normalize("NFKC", text or "").lower()
    return "".join(ch for ch in text if not ch.isspace() and unicodedata.category(ch)[0] not in ("P", "S"))


def name_variants(name: str) -> set[str]:
    """Raw and parenthetical-stripped forms of a zoo name, normalized."""
    variants = {normalize_name(name), normalize_name(_PAREN_RE.sub("", name))}
    return {v for v in variants if len(v) >= MIN_VARIANT_LENGTH}


@dataclass
class ZooIndex:
    """Hostname and name lookups for zoos."""

    host_to_zoo: dict[str, str] = field(default_factory=dict)
    name_variants: list[tuple[str, str]] = field(default_factory=list)

    @classmethod
    def build(cls, zoos: Iterable[Zoo], sources: Iterable[Source]) -> ZooIndex:
        """
        Build an index from zoo rows and site sources.

        Args:
            zoos: All known zoos
            sources: Sources; only site sources tied to a zoo are used

        Returns:
            A fresh ZooIndex
        """
        index = cls()

        for zoo in zoos:
            if not zoo.id:
                continue
            host = domain_of(zoo.website)
            if host:
                index.host_to_zoo[host] = zoo.id
            for variant in name_variants(zoo.name):
                index.name_variants.append((zoo.id, variant))

        for source in sources:
            if source.kind != SourceKind.SITE or not source.zoo_id:
                continue
            host = domain_of(source.url)
            if host:
                index.host_to_zoo[host] = source.zoo_id

        # Longest first so the scan can stop at the first hit.
        index.name_variants.sort(key=lambda pair: len(pair[1]), reverse=True)
        return index

    def zoo_for_host(self, url: str | None) -> str | None:
        """Look a URL's host up, walking up to parent domains."""
        host = domain_of(url)
        while host:
            if host in self.host_to_zoo:
                return self.host_to_zoo[host]
            if host.count(".") < 2:
                break
            host = host.split(".", 1)[1]
        return None

    def zoo_for_title(self, title: str | None) -> str | None:
        """Find the longest zoo name variant contained in a title."""
        text = normalize_name(title)
        if not text:
            return None
        for zoo_id, variant in self.name_variants:
            if variant in text:
                return zoo_id
        return None

    def guess_zoo(self, title: str | None, url: str | None) -> str | None:
        """Guess a zoo by hostname first, then by name in the title."""
        return self.zoo_for_host(url) or self.zoo_for_title(title)
