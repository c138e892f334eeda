from __future__ import annotations

from common.format import format_table, mask_phone, to_num
from common.parser import parse_bool, parse_key_value_tokens, parse_num, tokenize


def test_tokenize_quotes_and_escapes():
    assert tokenize('  cart add "A 1" qty=2 ') == ["cart", "add", "A 1", "qty=2"]
    assert tokenize("say it\\'s 'two words'") == ["say", "it's", "two words"]
    assert tokenize("   ") == []


def test_parse_key_value_tokens():
    args, opts = parse_key_value_tokens(["verify", "1234", "phone=9123", "=x", "a=b=c"])
    assert args == ["verify", "1234", "=x"]
    assert opts == {"phone": "9123", "a": "b=c"}


def test_parse_bool_and_num():
    assert parse_bool("On") is True
    assert parse_bool("no", True) is False
    assert parse_bool("maybe", True) is True
    assert parse_num("2.5", 0) == 2.5
    assert parse_num("inf", 1) == 1
    assert parse_num(None, 3) == 3


def test_mask_phone():
    assert mask_phone("91234567") == "912****67"
    assert mask_phone("1234") == "1234"


def test_format_table_aligns_columns():
    out = format_table(["A", "NAME"], [["1", "x"], ["22", "longer"]])
    assert out.splitlines() == ["A   NAME", "--  ------", "1   x", "22  longer"]


def test_to_num():
    assert to_num("3.5") == 3.5
    assert to_num(True) is None
    assert to_num("x") is None
