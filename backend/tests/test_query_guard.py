"""Tests for search input guards."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

sys.path.insert(0, str(Path(__file__).parent.parent))

from models import SearchRequest
from services.errors import ValidationError
from services.query_guard import normalize_and_validate_query, validate_limit


def test_normalize_and_validate_query_collapses_whitespace() -> None:
    query = " \n\tWhat   is   RAG?\t "
    assert normalize_and_validate_query(query) == "What is RAG?"


def test_normalize_and_validate_query_rejects_whitespace_only() -> None:
    with pytest.raises(ValidationError, match="whitespace"):
        normalize_and_validate_query("  \n\t   ")


def test_normalize_and_validate_query_rejects_non_strings() -> None:
    with pytest.raises(ValueError):
        normalize_and_validate_query(42)


def test_validate_limit_bounds() -> None:
    assert validate_limit(1) == 1
    assert validate_limit(20) == 20
    for bad in (0, 21, True, "3"):
        with pytest.raises(ValidationError):
            validate_limit(bad)


def test_search_request_normalizes_input_before_downstream_use() -> None:
    req = SearchRequest(query="  Explain   pgvector\nindexes  ")
    assert req.query == "Explain pgvector indexes"
    assert req.limit == 5


def test_search_request_rejects_whitespace_only_query() -> None:
    with pytest.raises(PydanticValidationError):
        SearchRequest(query="\n\t  ")
