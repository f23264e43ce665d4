"""
Signal Extraction Module
========================

Pure text heuristics over feed titles: is this a birth announcement,
which species, which individual name, and when was the animal born.

All tables here are ordered and evaluated first-match-wins, so entries
can be added or reordered without touching control flow.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from zoo_babies.core.schema import FeedItem
from zoo_babies.ingestion.normalizer import parse_date

BIRTH_KEYWORDS = re.compile(
    r"(誕生|出産|赤ちゃん|赤仔|ベビー|生まれ|産まれ|命名|名前が決|名前決定|愛称決定|"
    r"\bbaby\b|\bborn\b|\bnamed\b)",
    re.IGNORECASE,
)

# (alias, canonical). More specific aliases must precede any alias they contain.
SPECIES_ALIASES: list[tuple[str, str]] = [
    ("ジャイアントパンダ", "ジャイアントパンダ"),
    ("レッサーパンダ", "レッサーパンダ"),
    ("パンダ", "ジャイアントパンダ"),
    ("ホッキョクグマ", "ホッキョクグマ"),
    ("シロクマ", "ホッキョクグマ"),
    ("ホッキョクギツネ", "ホッキョクギツネ"),
    ("マレーグマ", "マレーグマ"),
    ("ツキノワグマ", "ツキノワグマ"),
    ("アムールトラ", "アムールトラ"),
    ("スマトラトラ", "スマトラトラ"),
    ("ベンガルトラ", "ベンガルトラ"),
    ("ホワイトタイガー", "ベンガルトラ"),
    ("ユキヒョウ", "ユキヒョウ"),
    ("アムールヒョウ", "アムールヒョウ"),
    ("ホワイトライオン", "ライオン"),
    ("ライオン", "ライオン"),
    ("チーター", "チーター"),
    ("ニシローランドゴリラ", "ニシローランドゴリラ"),
    ("ゴリラ", "ニシローランドゴリラ"),
    ("チンパンジー", "チンパンジー"),
    ("ボノボ", "ボノボ"),
    ("オランウータン", "オランウータン"),
    ("アミメキリン", "キリン"),
    ("キリン", "キリン"),
    ("コビトカバ", "コビトカバ"),
    ("カバ", "カバ"),
    ("アジアゾウ", "アジアゾウ"),
    ("アフリカゾウ", "アフリカゾウ"),
    ("ゾウ", "ゾウ"),
    ("グレビーシマウマ", "グレビーシマウマ"),
    ("シマウマ", "シマウマ"),
    ("コツメカワウソ", "コツメカワウソ"),
    ("カワウソ", "カワウソ"),
    ("コアラ", "コアラ"),
    ("アカカンガルー", "アカカンガルー"),
    ("カンガルー", "カンガルー"),
    ("ワラビー", "ワラビー"),
    ("フンボルトペンギン", "フンボルトペンギン"),
    ("キングペンギン", "キングペンギン"),
    ("ジェンツーペンギン", "ジェンツーペンギン"),
    ("ペンギン", "ペンギン"),
    ("フラミンゴ", "フラミンゴ"),
    ("カピバラ", "カピバラ"),
    ("ミーアキャット", "ミーアキャット"),
    ("スナネコ", "スナネコ"),
    ("トラ", "トラ"),
    ("giant panda", "ジャイアントパンダ"),
    ("red panda", "レッサーパンダ"),
    ("polar bear", "ホッキョクグマ"),
]

# Words that look like names in quotes but are not.
GENERIC_NAME_WORDS: frozenset[str] = frozenset(
    {
        "赤ちゃん",
        "あかちゃん",
        "あか",
        "ベビー",
        "baby",
        "誕生",
        "出産",
        "命名",
        "名前",
        "愛称",
        "動物園",
        "水族館",
        "お知らせ",
        "公開",
        "速報",
        "動画",
        "オス",
        "メス",
        "双子",
        "ニュース",
    }
)

# (label, pattern), most explicit naming phrase first, bare quoted token last.
NAME_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("named_phrase", re.compile(r"(?:名前|愛称|命名)\s*(?:は|が|を|:|：)?\s*[「『\"“](.+?)[」』\"”]")),
    ("named_suffix", re.compile(r"[「『\"“](.+?)[」』\"”]\s*(?:と命名|と名付け|に決定|に決まり)")),
    ("chan_katakana", re.compile(r"(?<![ァ-ヴー])([ァ-ヴー]{2,8})(?:ちゃん|くん|君)")),
    ("chan_hiragana", re.compile(r"(?:^|の|、|\s)([ぁ-ゖー]{2,6})(?:ちゃん|くん|君)")),
    ("quoted", re.compile(r"[「『](.+?)[」』]")),
    ("named_en", re.compile(r"\b[Nn]amed\s+[\"“']?([A-Z][A-Za-z]{1,15})")),
]

_NAME_CHARS_RE = re.compile(r"^[ぁ-ゖァ-ヺー一-龯々A-Za-z]{1,10}$")

_AGE_RE = re.compile(r"(?:生後\s*(\d{1,4})\s*日|(\d{1,4})\s*日齢)")
_AGE_STATEMENT_RE = re.compile(
    r"(\d{1,2})\s*月\s*(\d{1,2})\s*日[^\d]{0,12}?(?:生後\s*(\d{1,4})\s*日|(\d{1,4})\s*日齢)"
)


@dataclass(frozen=True)
class SpeciesMatch:
    """A species found in a title."""

    canonical: str
    matched_alias: str


@dataclass
class EventSignals:
    """Everything the extractors found in one item."""

    is_birth: bool = False
    species: SpeciesMatch | None = None
    name: str | None = None
    age_days: int | None = None
    birthday: date | None = None
    has_title_date: bool = False


def _nfkc(text: str | None) -> str:
    return unicodedata.normalize("NFKC", text or "")


def is_birth_announcement(title: str | None) -> bool:
    """Check whether a title reads like a birth or naming announcement."""
    return bool(BIRTH_KEYWORDS.search(_nfkc(title)))


def extract_species(title: str | None) -> SpeciesMatch | None:
    """
    Find the species a title talks about.

    Returns:
        The first alias hit in table order, or None
    """
    text = _nfkc(title)
    lowered = text.lower()
    for alias, canonical in SPECIES_ALIASES:
        haystack = lowered if alias.isascii() else text
        if alias in haystack:
            return SpeciesMatch(canonical=canonical, matched_alias=alias)
    return None


def _is_plausible_name(candidate: str) -> bool:
    if candidate.lower() in GENERIC_NAME_WORDS:
        return False
    # Part of a species word, e.g. ャイアントパンダ.
    lowered = candidate.lower()
    if any(lowered in alias.lower() for alias, _ in SPECIES_ALIASES):
        return False
    return bool(_NAME_CHARS_RE.match(candidate))


def extract_individual_name(title: str | None) -> str | None:
    """
    Pull the individual animal's name out of a title.

    Patterns are tried in NAME_PATTERNS order; within a pattern every
    match is considered until one passes the plausibility check.
    """
    text = _nfkc(title)
    for _label, pattern in NAME_PATTERNS:
        for m in pattern.finditer(text):
            candidate = m.group(1).strip()
            if _is_plausible_name(candidate):
                return candidate
    return None


def extract_age_days(title: str | None) -> int | None:
    """Find an explicit age in days, e.g. 生後15日 or 15日齢."""
    m = _AGE_RE.search(_nfkc(title))
    if not m:
        return None
    return int(m.group(1) or m.group(2))


def _reference_date(reference: datetime | date | None) -> date:
    if reference is None:
        return date.today()
    if isinstance(reference, datetime):
        return reference.date()
    return reference


def infer_birthday_from_age_statement(
    title: str | None,
    reference: datetime | date | None,
) -> date | None:
    """
    Work out a birthday from a "9月3日（15日齢）" style statement.

    The month/day is placed in the reference year and the age is
    subtracted. If that month/day lies after the reference date, the
    reference date itself is used as the anchor instead. A bare age
    statement without month/day is anchored on the reference date.

    Args:
        title: Title text
        reference: Publish timestamp of the item

    Returns:
        Inferred birthday, or None when the title states no age
    """
    text = _nfkc(title)
    ref = _reference_date(reference)

    m = _AGE_STATEMENT_RE.search(text)
    if m:
        days = int(m.group(3) or m.group(4))
        try:
            anchor = date(ref.year, int(m.group(1)), int(m.group(2)))
        except ValueError:
            anchor = ref
        if anchor > ref:
            anchor = ref
        return anchor - timedelta(days=days)

    days = extract_age_days(text)
    if days is None:
        return None
    return ref - timedelta(days=days)


def parse_date_in_title(title: str | None, reference: datetime | date | None = None) -> date | None:
    """Find a literal date in a title; month/day-only dates take the reference year."""
    return parse_date(title, _reference_date(reference))


def infer_birthday(title: str | None, published_at: datetime | date | None) -> date | None:
    """
    Infer a birthday for an item.

    Priority: age arithmetic, then a date written in the title, then
    the publish date.
    """
    from_age = infer_birthday_from_age_statement(title, published_at)
    if from_age:
        return from_age

    from_title = parse_date_in_title(title, published_at)
    if from_title:
        return from_title

    if published_at is None:
        return None
    return _reference_date(published_at)


def extract_signals(item: FeedItem) -> EventSignals:
    """Run every extractor over a feed item's title."""
    title = item.title
    return EventSignals(
        is_birth=is_birth_announcement(title),
        species=extract_species(title),
        name=extract_individual_name(title),
        age_days=extract_age_days(title),
        birthday=infer_birthday(title, item.published_at),
        has_title_date=parse_date_in_title(title, item.published_at) is not None,
    )
