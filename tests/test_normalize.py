import datetime as dt

from repomem.normalize import normalize


def test_empty_text_stays_empty() -> None:
    assert normalize("") == ""


def test_relative_days_become_iso_dates() -> None:
    today = dt.date(2026, 3, 14)
    assert normalize("today I will ship", today=today) == "2026-03-14 I will ship"
    assert normalize("fixed it yesterday.", today=today) == "fixed it 2026-03-13."


def test_today_defaults_to_current_date() -> None:
    result = normalize("today I will ship")
    assert result == f"{dt.date.today().isoformat()} I will ship"


def test_filler_removed_and_duplicate_sentence_collapsed() -> None:
    assert normalize("I think this is good. I think this is good.") == "this is good."


def test_filler_words_only_match_whole_words() -> None:
    assert normalize("basically the adjustment was really small") == (
        "the adjustment was small"
    )


def test_relative_days_inside_words_are_kept() -> None:
    assert normalize("todays build", today=dt.date(2026, 1, 1)) == "todays build"


def test_whitespace_is_collapsed() -> None:
    assert normalize("  wired   the\n\tcache  ") == "wired the cache"


def test_paths_survive_sentence_splitting() -> None:
    text = "Updated src/auth/middleware.ts. Updated src/auth/middleware.ts."
    assert normalize(text) == "Updated src/auth/middleware.ts."


def test_text_of_only_filler_is_empty() -> None:
    assert normalize("basically just really") == ""
