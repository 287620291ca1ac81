import pytest

from attendance_parser.calculator import classes_needed, overall
from attendance_parser.records import ParsedRecord


def test_exactly_at_minimum():
    calc = classes_needed(15, 20, 75)
    assert calc.is_above_minimum
    assert calc.can_miss == 0
    assert calc.need_to_attend == 0
    assert calc.current_percentage == pytest.approx(75.0)


def test_can_miss_keeps_minimum():
    calc = classes_needed(20, 20, 75)
    assert calc.can_miss == 6
    assert 20 / (20 + calc.can_miss) * 100 >= 75
    assert 20 / (20 + calc.can_miss + 1) * 100 < 75


def test_need_to_attend_reaches_minimum():
    calc = classes_needed(5, 10, 75)
    assert not calc.is_above_minimum
    assert calc.need_to_attend == 10
    assert calc.can_miss == 0

    calc = classes_needed(2, 3, 75)
    assert calc.need_to_attend == 1


def test_relief_threshold():
    calc = classes_needed(13, 20, 65)
    assert calc.is_above_minimum
    assert calc.can_miss == 0


def test_no_classes_held():
    calc = classes_needed(0, 0)
    assert not calc.is_above_minimum
    assert calc.current_percentage == 0
    assert calc.need_to_attend == 1


@pytest.mark.parametrize("minimum", [0, 100, -5, 120])
def test_invalid_minimum(minimum):
    with pytest.raises(ValueError):
        classes_needed(10, 20, minimum)


def test_overall():
    recs = [ParsedRecord("A", 20, 15, 5), ParsedRecord("B", 10, 9, 1)]
    assert overall(recs) == (24, 30)
    assert overall([]) == (0, 0)
