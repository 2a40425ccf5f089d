import pytest

from codesearch.errors import InvalidQuery
from codesearch.index.filters import compile_filter

RUST = {"lang": "rust", "path": "src/lib.rs", "start_line": 1}
PY = {"lang": "python", "path": "tools/gen.py", "start_line": 10}


def test_none_and_empty_mean_no_filter():
    assert compile_filter(None) is None
    assert compile_filter({}) is None


def test_equality_and_membership():
    only_rust = compile_filter({"lang": "rust"})
    assert only_rust(RUST) and not only_rust(PY)

    either = compile_filter({"lang": ["rust", "python"]})
    assert either(RUST) and either(PY)
    assert not either({"lang": "go"})
    assert not either({})


def test_operator_forms():
    under_src = compile_filter({"path": {"prefix": "src/"}})
    assert under_src(RUST) and not under_src(PY)
    assert not under_src({"path": 7})

    not_python = compile_filter({"lang": {"ne": "python"}})
    assert not_python(RUST) and not not_python(PY)

    combined = compile_filter({"lang": {"in": ["python"]}, "start_line": {"eq": 10}})
    assert combined(PY) and not combined(RUST)


def test_callable_filter():
    predicate = compile_filter(lambda meta: meta["start_line"] > 5)
    assert predicate(PY) and not predicate(RUST)


def test_callable_errors_become_invalid_query():
    predicate = compile_filter(lambda meta: meta["missing"])
    with pytest.raises(InvalidQuery):
        predicate(RUST)


@pytest.mark.parametrize(
    "criteria",
    [
        {"lang": {"regex": "r.*"}},
        {"lang": {}},
        {"path": {"prefix": 3}},
        {"lang": {"in": "rust"}},
        {"": "x"},
        ["lang", "rust"],
        42,
    ],
)
def test_malformed_filters_rejected(criteria):
    with pytest.raises(InvalidQuery):
        compile_filter(criteria)
