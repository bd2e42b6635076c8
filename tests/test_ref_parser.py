import pytest
from api.ref_parser import extract_reference, normalize_reference, parse_reference


def test_parse_reference_single_verse():
    book, ch, vs, vs_end = parse_reference("John 3:16")
    assert book == "John"
    assert ch == 3
    assert vs == 16
    assert vs_end == 16


def test_parse_reference_abbreviated_range():
    assert parse_reference("1 Cor 13:4-7") == ("1 Corinthians", 13, 4, 7)


def test_parse_reference_whole_chapter():
    assert parse_reference("Psalm 23") == ("Psalms", 23, None, None)


def test_parse_reference_roman_ordinal():
    assert parse_reference("II Kings 2:11") == ("2 Kings", 2, 11, 11)


def test_parse_reference_isaiah_is_not_an_ordinal():
    assert parse_reference("Isaiah 40:31")[0] == "Isaiah"


def test_parse_reference_invalid():
    with pytest.raises(ValueError):
        parse_reference("")
    with pytest.raises(ValueError):
        parse_reference("Hezekiah 1:1")
    with pytest.raises(ValueError):
        parse_reference("Genesis 51:1")


def test_normalize_reference():
    assert normalize_reference("rom 8:28") == "Romans 8:28"
    assert normalize_reference("Prov 3:5-6") == "Proverbs 3:5-6"
    assert normalize_reference("psalm 23") == "Psalms 23"


def test_extract_reference_from_text():
    assert extract_reference("As Rom 8:28 says, all things work together") == ("Romans", 8, 28, 28)
    assert extract_reference("no scripture here") is None
