"""Unit tests for SA/EA declaration number normalization."""

import pytest

from apurement_kernel.domain.numbering import (
    normalize_declaration_number,
    normalize_ea_number,
    normalize_sa_number,
)
from apurement_kernel.exceptions import InvalidDeclarationNumberError


@pytest.mark.parametrize("raw", ["250001", "SA250001", "sa250001", "  Sa250001 "])
def test_sa_number_forms(raw):
    assert normalize_sa_number(raw) == "SA250001"


@pytest.mark.parametrize("raw", ["250001", "EA250001", " ea250001"])
def test_ea_number_forms(raw):
    assert normalize_ea_number(raw) == "EA250001"


@pytest.mark.parametrize(
    "raw",
    ["", "   ", None, 250001, "25001", "2500012", "SA25000A", "EA250001", "SA 250001", "SASA250001"],
)
def test_invalid_sa_numbers(raw):
    with pytest.raises(InvalidDeclarationNumberError) as exc_info:
        normalize_sa_number(raw)

    assert exc_info.value.prefix == "SA"
    assert exc_info.value.category == "VALIDATION"


def test_generic_prefix():
    assert normalize_declaration_number("EA", "000042") == "EA000042"
