from __future__ import annotations

import pytest

from vespa_sync.references import (
    collect_reference_ids,
    connection_value,
    is_valid_record_id,
    resolve_reference_id,
)

ID_A = "5f1b2c3d4e5f6a7b8c9d0e1f"
ID_B = "60aa11bb22cc33dd44ee55ff"


@pytest.mark.parametrize(
    "value, expected",
    [
        (ID_A, ID_A),
        ({"id": ID_A}, ID_A),
        ({"identifier": ID_A}, ID_A),
        ([ID_A], ID_A),
        ([{"id": ID_A, "identifier": "Some School"}], ID_A),
        ({"_id": ID_A}, ID_A),
        ({"id": "not-an-id", "identifier": ID_B}, ID_B),
        ({"id": ID_A, "_id": ID_B}, ID_A),
        ([ID_A, ID_B], None),
        ("Some School", None),
        (None, None),
        ({}, None),
        (42, None),
    ],
)
def test_resolve_reference_id_priority(value, expected) -> None:
    assert resolve_reference_id(value) == expected


def test_collect_reference_ids_skips_unresolvable_items() -> None:
    value = [{"id": ID_A}, "garbage", {"identifier": "Mr Tutor"}, ID_B]
    assert collect_reference_ids(value) == [ID_A, ID_B]
    assert collect_reference_ids({"id": ID_A}) == [ID_A]
    assert collect_reference_ids("") == []


def test_connection_value_shape() -> None:
    assert connection_value([]) is None
    assert connection_value([ID_A]) == ID_A
    assert connection_value([ID_A, ID_B]) == [ID_A, ID_B]


def test_record_id_validation() -> None:
    assert is_valid_record_id(ID_A.upper())
    assert not is_valid_record_id(ID_A[:-1])
    assert not is_valid_record_id(None)
