"""Tests for the query grammar and resolution against a relation store."""

import pytest

from kin_engine import (
    Appellation,
    Define,
    NoResult,
    Query,
    TokenKind,
    UnexpectedEnd,
    UnexpectedToken,
    lex_query,
    parse_statement,
    query,
)


def test_paternal_grandfather(store):
    result = query("爸爸的爸爸是什么", store)
    assert result == Appellation("爸爸", "爸爸", "爷爷")
    assert str(result) == "爸爸的爸爸是爷爷"


def test_missing_pair_is_no_result(store):
    with pytest.raises(NoResult) as exc:
        query("爸爸的哥哥是什么", store)
    assert str(exc.value) == "no result found"
    assert (exc.value.first, exc.value.second) == ("爸爸", "哥哥")


def test_same_query_twice_is_identical(store):
    first = query("妈妈的妈妈是什么", store)
    second = query("妈妈的妈妈是什么", store)
    assert first == second
    assert str(first) == str(second) == "妈妈的妈妈是姥姥"


def test_pure_query_does_not_touch_the_store(store):
    before = list(store.items())
    query("爸爸的妈妈是什么", store)
    assert list(store.items()) == before


class TestStatements:
    def test_query_statement(self):
        assert parse_statement(lex_query("爸爸的妈妈是什么")) == Query("爸爸", "妈妈")

    def test_define_statement(self):
        statement = parse_statement(lex_query("哥哥的妈妈是妈妈"))
        assert isinstance(statement, Define)
        assert statement.result == "妈妈"
        assert statement.result_span.start == 18


@pytest.mark.parametrize(
    "source, error, message, start",
    [
        ("", UnexpectedEnd, "first role not found", 0),
        ("的爸爸", UnexpectedToken, "expected a role name", 0),
        ("爸爸", UnexpectedEnd, "missing 的", 6),
        ("爸爸是", UnexpectedToken, "missing 的", 6),
        ("爸爸的", UnexpectedEnd, "second role not found", 9),
        ("爸爸的的", UnexpectedToken, "expected a role name", 9),
        ("爸爸的爸爸", UnexpectedEnd, "missing 是", 15),
        ("爸爸的爸爸什么", UnexpectedToken, "missing 是", 15),
        ("爸爸的爸爸是", UnexpectedEnd, "expected 什么", 18),
        ("爸爸的爸爸是的", UnexpectedToken, "expected 什么", 18),
        ("爸爸的爸爸是什么什么", UnexpectedToken, "unexpected trailing input", 24),
    ],
)
def test_grammar_errors(store, source, error, message, start):
    with pytest.raises(error) as exc:
        query(source, store)
    assert exc.value.message == message
    assert exc.value.span.start == start


def test_unexpected_end_reports_offset_after_last_token(store):
    with pytest.raises(UnexpectedEnd) as exc:
        query("爸爸的爸爸", store)
    assert exc.value.expected is TokenKind.IS
    assert exc.value.offset == 15
    assert exc.value.span.column == 10


class TestDefinitions:
    def test_rejected_unless_enabled(self, store):
        with pytest.raises(UnexpectedToken, match="expected 什么"):
            query("哥哥的妈妈是妈妈", store)
        assert ("哥哥", "妈妈") not in store

    def test_definition_is_stored_and_returned(self, store):
        result = query("哥哥的妈妈是妈妈", store, allow_define=True)
        assert result.result == "妈妈"
        assert store.lookup("哥哥", "妈妈") == "妈妈"
        assert query("哥哥的妈妈是什么", store).result == "妈妈"

    def test_definition_overwrites_seed(self, store):
        result = query("爸爸的爸爸是爸爸", store, allow_define=True)
        assert result.result == "爸爸"
        assert store.lookup("爸爸", "爸爸") == "爸爸"

    def test_grammar_error_defines_nothing(self, store):
        size = len(store)
        with pytest.raises(UnexpectedToken):
            query("哥哥的妈妈是妈妈妈妈的", store, allow_define=True)
        assert len(store) == size
