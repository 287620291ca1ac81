import json

import pytest

from attendance_parser.records import (
    ParsedRecord,
    apply_renames,
    infer_missing,
    records_from_candidates,
    repair_counts,
)


def test_percentage_is_derived():
    assert ParsedRecord("A", 40, 30, 10).percentage == pytest.approx(75.0)
    assert ParsedRecord("A", 0, 0, 0).percentage == 0


def test_to_dict():
    d = ParsedRecord("Data Structures", 34, 31, 3, "21CSC201J").to_dict()
    assert d == {
        "name": "Data Structures",
        "code": "21CSC201J",
        "total": 34,
        "present": 31,
        "absent": 3,
        "percentage": 91.18,
    }


def test_infer_missing():
    assert infer_missing(40, 30, None) == (40, 30, 10)
    assert infer_missing(40, None, 10) == (40, 30, 10)
    assert infer_missing(None, 30, 10) == (40, 30, 10)
    assert infer_missing(10, 30, None) == (10, 30, 0)
    assert infer_missing(40, None, None) == (40, None, None)


def test_repair_counts():
    assert repair_counts(23, 17, 6) == (23, 17, 6)
    assert repair_counts(23, 17, 5) == (23, 17, 6)
    assert repair_counts(20, 18, 5) == (23, 18, 5)
    assert repair_counts(10, 12, 0) == (12, 12, 0)


def test_renames_prefer_code():
    recs = [
        ParsedRecord("Data Structures", 34, 31, 3, "21CSC201J"),
        ParsedRecord("Subject 1", 10, 5, 5),
        ParsedRecord("DBMS", 23, 17, 6),
    ]
    out = apply_renames(recs, {"21CSC201J": "DSA", "Subject 1": "Compiler Design", "Data Structures": "x"})
    assert [r.name for r in out] == ["DSA", "Compiler Design", "DBMS"]
    assert out[0].code == "21CSC201J"
    assert recs[0].name == "Data Structures"


def test_candidates_from_subjects_object():
    payload = {
        "subjects": [
            {"name": " Maths ", "total": 40, "present": 30, "absent": 10, "percentage": 12},
            {"name": "", "total": "34", "present": "31", "absent": "3"},
            {"name": "Empty", "total": 0, "present": 0, "absent": 0},
            {"name": "Broken", "total": "n/a", "present": 1, "absent": 1},
            {"name": "Flag", "total": True, "present": 1, "absent": 0},
            {"name": "Endless", "total": float("inf"), "present": 1, "absent": 0},
            {"name": "Unknown", "total": float("nan"), "present": 1, "absent": 0},
            "not a dict",
        ]
    }
    recs = records_from_candidates(payload)
    assert [(r.name, r.total, r.present, r.absent) for r in recs] == [
        ("Maths", 40, 30, 10),
        ("Subject", 34, 31, 3),
    ]
    assert recs[0].percentage == pytest.approx(75.0)


def test_candidates_are_repaired():
    (r,) = records_from_candidates([{"name": "OS", "total": 40, "present": 30, "absent": 5}])
    assert (r.total, r.present, r.absent) == (40, 30, 10)


def test_candidates_with_unknown_shape():
    assert records_from_candidates(None) == []
    assert records_from_candidates("[]") == []
    assert records_from_candidates({"other": []}) == []


def test_candidates_with_out_of_range_json_numbers():
    payload = json.loads(
        '{"subjects": [{"name": "OS", "total": 1e400, "present": 1, "absent": 0},'
        ' {"name": "CN", "total": Infinity, "present": 1, "absent": 0},'
        ' {"name": "DBMS", "total": 23, "present": 17, "absent": 6}]}'
    )
    recs = records_from_candidates(payload)
    assert [r.name for r in recs] == ["DBMS"]
