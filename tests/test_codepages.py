from posprint.printing.codepages import (
    code_page_for_number,
    code_page_number,
    normalize_code_page,
    transcode,
)


def test_encodable_text_is_unchanged():
    assert transcode("Café ñ", "cp437") == ("Café ñ", [])


def test_lookalikes_are_substituted_and_reported():
    text, subs = transcode("“Hi” — €5", "cp437")
    assert text == '"Hi" - EUR5'
    assert subs == ['“->"', '”->"', "—->-", "€->EUR"]


def test_code_page_with_euro_keeps_it():
    assert transcode("€5", "cp858") == ("€5", [])


def test_accents_are_stripped_before_placeholder():
    assert transcode("ő", "cp437") == ("o", ["ő->o"])
    assert transcode("日本", "cp437") == ("??", ["日->?", "本->?"])


def test_normalize_code_page_aliases_and_unknown():
    assert normalize_code_page("PC850") == "cp850"
    assert normalize_code_page("windows-1252") == "cp1252"
    assert normalize_code_page("klingon") == "cp437"


def test_code_page_numbers():
    assert code_page_number("cp1252") == 16
    assert code_page_number("cp437") == 0
    assert code_page_for_number(19) == "cp858"
    assert code_page_for_number(99) == "cp437"
