"""Tests for title signal extraction."""

from datetime import UTC, date, datetime

import pytest

from zoo_babies.core.schema import FeedItem
from zoo_babies.ingestion.signals import (
    extract_age_days,
    extract_individual_name,
    extract_signals,
    extract_species,
    infer_birthday,
    infer_birthday_from_age_statement,
    is_birth_announcement,
    parse_date_in_title,
)


class TestBirthAnnouncement:
    """Tests for is_birth_announcement."""

    @pytest.mark.parametrize(
        "title",
        [
            "アジアゾウの赤ちゃん誕生",
            "キリンが出産しました",
            "カピバラのベビー公開",
            "レッサーパンダの名前が決まりました",
            "Polar bear cub born in Sapporo",
        ],
    )
    def test_positive(self, title: str) -> None:
        """Test titles that announce a birth or naming."""
        assert is_birth_announcement(title)

    @pytest.mark.parametrize("title", ["休園日のお知らせ", "夏の夜間開園", "", None])
    def test_negative(self, title: str | None) -> None:
        """Test titles that do not."""
        assert not is_birth_announcement(title)


class TestSpecies:
    """Tests for extract_species."""

    def test_specific_alias_wins_over_synonym(self) -> None:
        """Test that the canonical name is returned when both forms appear."""
        match = extract_species("シロクマ（ホッキョクグマ）の赤ちゃんが誕生")
        assert match is not None
        assert match.canonical == "ホッキョクグマ"
        assert match.matched_alias == "ホッキョクグマ"

    def test_synonym_maps_to_canonical(self) -> None:
        """Test that a generic synonym maps to its canonical species."""
        assert extract_species("シロクマの赤ちゃん").canonical == "ホッキョクグマ"
        assert extract_species("パンダの双子").canonical == "ジャイアントパンダ"

    def test_specific_before_generic(self) -> None:
        """Test that a longer alias is not shadowed by a shorter one it contains."""
        assert extract_species("レッサーパンダの赤ちゃん").canonical == "レッサーパンダ"
        assert extract_species("スマトラトラの赤ちゃん").canonical == "スマトラトラ"
        assert extract_species("コビトカバ誕生").canonical == "コビトカバ"

    def test_full_width_and_english(self) -> None:
        """Test NFKC normalization and English aliases."""
        assert extract_species("ﾊﾟﾝﾀﾞの赤ちゃん").canonical == "ジャイアントパンダ"
        assert extract_species("Polar Bear cub born").canonical == "ホッキョクグマ"

    def test_no_species(self) -> None:
        """Test that unrelated titles yield None."""
        assert extract_species("休園日のお知らせ") is None


class TestIndividualName:
    """Tests for extract_individual_name."""

    @pytest.mark.parametrize(
        "title,expected",
        [
            ("赤ちゃんの名前が「リーリー」に決定", "リーリー"),
            ("レッサーパンダの赤ちゃん「ふうふう」と命名", "ふうふう"),
            ("アイアイちゃんが一般公開", "アイアイ"),
            ("ジャイアントパンダの赤ちゃん「さくら」誕生（2025年6月1日）", "さくら"),
            ("Red panda cub named Mochi", "Mochi"),
        ],
    )
    def test_names(self, title: str, expected: str) -> None:
        """Test each naming pattern."""
        assert extract_individual_name(title) == expected

    @pytest.mark.parametrize(
        "title",
        [
            "「赤ちゃん」公開中",
            "「ジャイアントパンダ」の赤ちゃん",
            "「とてもながいおしらせのなまえです」",
            "アジアゾウの赤ちゃん誕生",
            "ジャイアントパンダちゃん誕生",
            "レッサーパンダくんの一日",
            "Baby giraffe named after keeper",
        ],
    )
    def test_rejects_non_names(self, title: str) -> None:
        """Test that generic words, species fragments and over-long tokens are rejected."""
        assert extract_individual_name(title) is None


class TestBirthday:
    """Tests for age arithmetic and birthday inference."""

    def test_age_days(self) -> None:
        """Test both age spellings."""
        assert extract_age_days("生後15日のキリン") == 15
        assert extract_age_days("ライオン（30日齢）") == 30
        assert extract_age_days("ライオン") is None

    def test_age_statement(self) -> None:
        """Test that 9月3日（15日齢） seen on 2025-09-20 gives 2025-08-19."""
        reference = datetime(2025, 9, 20, tzinfo=UTC)
        assert infer_birthday_from_age_statement("9月3日（15日齢）", reference) == date(2025, 8, 19)

    def test_age_statement_in_future_anchors_on_reference(self) -> None:
        """Test that a month/day after the reference date is not future-dated."""
        reference = datetime(2025, 9, 20, tzinfo=UTC)
        assert infer_birthday_from_age_statement("12月25日（生後10日）", reference) == date(2025, 9, 10)

    def test_bare_age_anchors_on_reference(self) -> None:
        """Test that an age without month/day counts back from the reference."""
        assert infer_birthday_from_age_statement("生後30日のキリン", date(2025, 9, 20)) == date(2025, 8, 21)
        assert infer_birthday_from_age_statement("キリン", date(2025, 9, 20)) is None

    def test_title_date(self) -> None:
        """Test literal dates in titles."""
        assert parse_date_in_title("6月1日に誕生", date(2025, 6, 10)) == date(2025, 6, 1)
        assert parse_date_in_title("誕生", date(2025, 6, 10)) is None

    def test_priority(self) -> None:
        """Test age statement, then title date, then publish date."""
        published = datetime(2025, 6, 10, 3, 0, tzinfo=UTC)
        assert infer_birthday("6月1日（5日齢）", published) == date(2025, 5, 27)
        assert infer_birthday("2025年6月1日生まれ", published) == date(2025, 6, 1)
        assert infer_birthday("赤ちゃん誕生", published) == date(2025, 6, 10)
        assert infer_birthday("赤ちゃん誕生", None) is None


class TestExtractSignals:
    """Tests for the bundled extractor."""

    def test_end_to_end_title(self) -> None:
        """Test every signal on a typical announcement."""
        item = FeedItem(
            title="ジャイアントパンダの赤ちゃん「さくら」誕生（2025年6月1日）",
            url="https://www.tokyo-zoo.net/topic/1",
            published_at=datetime(2025, 6, 2, 1, 0, tzinfo=UTC),
        )
        signals = extract_signals(item)

        assert signals.is_birth is True
        assert signals.species is not None
        assert signals.species.canonical == "ジャイアントパンダ"
        assert signals.name == "さくら"
        assert signals.age_days is None
        assert signals.birthday == date(2025, 6, 1)
        assert signals.has_title_date is True
