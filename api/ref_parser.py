import re
from typing import Optional, Tuple

BOOKS = [
    ("Genesis", 50, ["gen", "ge", "gn"]),
    ("Exodus", 40, ["exo", "ex", "exod"]),
    ("Leviticus", 27, ["lev", "le", "lv"]),
    ("Numbers", 36, ["num", "nu", "nm"]),
    ("Deuteronomy", 34, ["deut", "deu", "dt"]),
    ("Joshua", 24, ["josh", "jos"]),
    ("Judges", 21, ["judg", "jdg"]),
    ("Ruth", 4, ["rth", "ru"]),
    ("1 Samuel", 31, ["1sam", "1sa"]),
    ("2 Samuel", 24, ["2sam", "2sa"]),
    ("1 Kings", 22, ["1kgs", "1ki"]),
    ("2 Kings", 25, ["2kgs", "2ki"]),
    ("1 Chronicles", 29, ["1chr", "1ch"]),
    ("2 Chronicles", 36, ["2chr", "2ch"]),
    ("Ezra", 10, ["ezr"]),
    ("Nehemiah", 13, ["neh", "ne"]),
    ("Esther", 10, ["est", "esth"]),
    ("Job", 42, ["jb"]),
    ("Psalms", 150, ["psalm", "ps", "psa", "pss"]),
    ("Proverbs", 31, ["prov", "pro", "prv"]),
    ("Ecclesiastes", 12, ["eccl", "ecc", "qoh"]),
    ("Song of Solomon", 8, ["songofsongs", "song", "sos", "canticles"]),
    ("Isaiah", 66, ["isa", "is"]),
    ("Jeremiah", 52, ["jer", "je"]),
    ("Lamentations", 5, ["lam", "la"]),
    ("Ezekiel", 48, ["ezek", "eze"]),
    ("Daniel", 12, ["dan", "da", "dn"]),
    ("Hosea", 14, ["hos", "ho"]),
    ("Joel", 3, ["jl"]),
    ("Amos", 9, ["am"]),
    ("Obadiah", 1, ["obad", "ob"]),
    ("Jonah", 4, ["jon", "jnh"]),
    ("Micah", 7, ["mic", "mc"]),
    ("Nahum", 3, ["nah", "na"]),
    ("Habakkuk", 3, ["hab", "hb"]),
    ("Zephaniah", 3, ["zeph", "zep"]),
    ("Haggai", 2, ["hag", "hg"]),
    ("Zechariah", 14, ["zech", "zec"]),
    ("Malachi", 4, ["mal", "ml"]),
    ("Matthew", 28, ["matt", "mt", "mat"]),
    ("Mark", 16, ["mrk", "mk", "mr"]),
    ("Luke", 24, ["luk", "lk"]),
    ("John", 21, ["jhn", "jn"]),
    ("Acts", 28, ["act", "ac"]),
    ("Romans", 16, ["rom", "ro", "rm"]),
    ("1 Corinthians", 16, ["1cor", "1co"]),
    ("2 Corinthians", 13, ["2cor", "2co"]),
    ("Galatians", 6, ["gal", "ga"]),
    ("Ephesians", 6, ["eph", "ephes"]),
    ("Philippians", 4, ["phil", "php", "pp"]),
    ("Colossians", 4, ["col", "co"]),
    ("1 Thessalonians", 5, ["1thess", "1th"]),
    ("2 Thessalonians", 3, ["2thess", "2th"]),
    ("1 Timothy", 6, ["1tim", "1ti"]),
    ("2 Timothy", 4, ["2tim", "2ti"]),
    ("Titus", 3, ["tit", "ti"]),
    ("Philemon", 1, ["phlm", "phm"]),
    ("Hebrews", 13, ["heb"]),
    ("James", 5, ["jas", "jm"]),
    ("1 Peter", 5, ["1pet", "1pe", "1pt"]),
    ("2 Peter", 3, ["2pet", "2pe", "2pt"]),
    ("1 John", 5, ["1jn", "1jhn", "1jo"]),
    ("2 John", 1, ["2jn", "2jhn", "2jo"]),
    ("3 John", 1, ["3jn", "3jhn", "3jo"]),
    ("Jude", 1, ["jud", "jd"]),
    ("Revelation", 22, ["rev", "re", "revelations"]),
]

ORDINAL_PREFIXES = {"i": "1", "ii": "2", "iii": "3", "first": "1", "second": "2", "third": "3"}


def _book_key(name: str) -> str:
    key = re.sub(r"[\s.]+", "", (name or "").lower())
    m = re.match(r"^(iii|ii|i|first|second|third)(?=[a-z])", key)
    if m and key[len(m.group(1)):] not in ("saiah", "sa", "s"):
        key = ORDINAL_PREFIXES[m.group(1)] + key[len(m.group(1)):]
    return key


BOOK_INDEX = {}
for _name, _chapters, _aliases in BOOKS:
    BOOK_INDEX[_book_key(_name)] = (_name, _chapters)
    for _alias in _aliases:
        BOOK_INDEX.setdefault(_alias, (_name, _chapters))


def resolve_book(name: str) -> Optional[str]:
    entry = BOOK_INDEX.get(_book_key(name))
    return entry[0] if entry else None


def chapter_count(book: str) -> int:
    entry = BOOK_INDEX.get(_book_key(book))
    return entry[1] if entry else 0


REFERENCE_PATTERN = re.compile(
    r"^(?P<book>(?:[1-3]\s*)?[A-Za-z][A-Za-z.\s]*?)\s*"
    r"(?P<chapter>\d+)"
    r"(?:\s*:\s*(?P<verse>\d+)(?:\s*[-–]\s*(?P<verse_end>\d+))?)?$"
)


def parse_reference(text: str) -> Tuple[str, int, Optional[int], Optional[int]]:
    """Parse "John 3:16", "1 Cor 13:4-7" or "Psalm 23" into (book, chapter, start, end)."""
    raw = (text or "").strip()
    m = REFERENCE_PATTERN.match(raw)
    if not m:
        raise ValueError("invalid reference")
    book = resolve_book(m.group("book"))
    if not book:
        raise ValueError("unknown book")
    chapter = int(m.group("chapter"))
    if chapter < 1 or chapter > chapter_count(book):
        raise ValueError("invalid chapter")
    if m.group("verse") is None:
        return book, chapter, None, None
    verse = int(m.group("verse"))
    verse_end = int(m.group("verse_end")) if m.group("verse_end") else verse
    if verse < 1:
        raise ValueError("invalid verse")
    if verse_end < verse:
        verse_end = verse
    return book, chapter, verse, verse_end


def format_reference(book: str, chapter: int, verse: Optional[int] = None, verse_end: Optional[int] = None) -> str:
    if verse is None:
        return f"{book} {chapter}"
    if verse_end and verse_end != verse:
        return f"{book} {chapter}:{verse}-{verse_end}"
    return f"{book} {chapter}:{verse}"


def normalize_reference(text: str) -> str:
    return format_reference(*parse_reference(text))


def extract_reference(text: str) -> Optional[Tuple[str, int, Optional[int], Optional[int]]]:
    if not text:
        return None
    pattern = (
        r"(?P<book>(?:[1-3]\s*)?[A-Za-z]+\.?)\s*(?P<chapter>\d+)\s*:\s*(?P<verse>\d+)"
        r"(?:\s*[-–]\s*(?P<verse_end>\d+))?"
    )
    for m in re.finditer(pattern, text):
        book = resolve_book(m.group("book"))
        if not book:
            continue
        ch = int(m.group("chapter"))
        vs = int(m.group("verse"))
        vs_end = int(m.group("verse_end")) if m.group("verse_end") else vs
        if vs_end < vs:
            vs_end = vs
        return book, ch, vs, vs_end
    return None
