import itertools
from datetime import datetime

from vaultsync.providers.anythingllm.naming import (
    SEPARATOR_TOKEN,
    is_mangleable,
    local_key,
    mangle,
    normalize_path,
    parse_timestamp,
    remote_key,
    unmangle,
)

SAMPLE_PATHS = [
    "note.md",
    "a/b.md",
    "a_b.md",
    "a-b.md",
    "a b.md",
    "a/b/c.md",
    "a/b c.md",
    "ab/c.md",
    "a/bc.md",
    "Projects/x.md",
    "ProjectsArchive/x.md",
    "Projects/Sub/x.md",
    "Заметки/день.md",
]


def test_mangle_removes_every_separator():
    for path in SAMPLE_PATHS:
        assert "/" not in mangle(path)


def test_mangle_is_injective_over_valid_paths():
    for a, b in itertools.combinations(SAMPLE_PATHS, 2):
        assert is_mangleable(a) and is_mangleable(b)
        assert mangle(a) != mangle(b), (a, b)


def test_unmangle_inverts_mangle():
    for path in SAMPLE_PATHS:
        assert unmangle(mangle(path)) == path


def test_mangle_uses_sentinel_token():
    assert mangle("Projects/Sub/x.md") == f"Projects{SEPARATOR_TOKEN}Sub{SEPARATOR_TOKEN}x.md"


def test_paths_with_colon_are_not_mangleable():
    assert is_mangleable("a/b.md") is True
    assert is_mangleable("a:/b.md") is False


def test_literal_backslash_cannot_alias_a_folder_separator():
    # On POSIX a\b.md is a single file name, distinct from a/b.md.
    assert is_mangleable("a\\b.md") is False
    assert is_mangleable("a/b.md") is True


def test_normalize_path_strips_slashes_and_dots():
    assert normalize_path("/Projects/") == "Projects"
    assert normalize_path("./Projects/./x.md") == "Projects/x.md"
    assert normalize_path("Projects\\x.md") == "Projects/x.md"
    assert normalize_path(".") == ""


def test_local_key_matches_key_from_remote_title():
    base = "Obsidian Vault"
    path = "Projects/Sub/x.md"
    uploaded_title = mangle(path)
    assert local_key(base, path) == remote_key(base, uploaded_title)
    assert remote_key(base, "x.md") == "Obsidian Vault/x.md"


def test_parse_timestamp_supports_epoch_and_iso():
    assert parse_timestamp("1700000000000") == 1700000000.0
    assert parse_timestamp(1700000000) == 1700000000.0
    assert parse_timestamp("2026-02-22T12:00:00+00:00") == 1771761600.0
    assert parse_timestamp("2026-02-22T12:00:00Z") == 1771761600.0


def test_parse_timestamp_supports_published_locale_format():
    expected = datetime(2024, 1, 15, 22, 30, 5).timestamp()
    assert parse_timestamp("1/15/2024, 10:30:05 PM") == expected


def test_parse_timestamp_unparseable_is_zero():
    assert parse_timestamp(None) == 0.0
    assert parse_timestamp("") == 0.0
    assert parse_timestamp("not a date") == 0.0


def test_parse_timestamp_rejects_non_finite_values():
    assert parse_timestamp("nan") == 0.0
    assert parse_timestamp("inf") == 0.0
    assert parse_timestamp(float("-inf")) == 0.0
