from documind.chunking.normalizer import MAX_CHUNK_CHARS, normalize_text


def test_disallowed_characters_become_single_spaces():
    assert normalize_text("Hello• world\t\n\n  again©") == "Hello world again"


def test_unicode_word_characters_survive():
    assert normalize_text("café \U0001F600 ok") == "café ok"


def test_urls_are_preserved_verbatim():
    text = "See https://example.com/path?a=1&b=2#frag and mail me@example.com"
    assert normalize_text(text) == text


def test_truncates_to_max_length():
    text = "word " * 1000
    cleaned = normalize_text(text)
    assert len(cleaned) <= MAX_CHUNK_CHARS
    assert not cleaned.endswith(" ")
    assert normalize_text("a" * 3000) == "a" * MAX_CHUNK_CHARS


def test_empty_input():
    assert normalize_text(None) == ""
    assert normalize_text("") == ""
    assert normalize_text(" \n\t ") == ""
    assert normalize_text("•••") == ""


def test_normalization_is_idempotent():
    samples = [
        "  Intro   text here.\n\nNext—line  ",
        "x " * 1500,
        "Tabs\tand nbsp​ zero width",
        "(brackets) [kept] {too} 'quotes' \"double\" 50% + #tag",
        "a" * 2047 + " b",
    ]
    for sample in samples:
        once = normalize_text(sample)
        assert normalize_text(once) == once


def test_custom_max_length():
    assert normalize_text("abcdef ghij", max_length=7) == "abcdef"
