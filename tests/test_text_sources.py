from PIL import Image  # type: ignore

from attendance_parser import text_sources
from attendance_parser.text_sources import Tok, group_into_lines, lines_to_text, read_text


def test_lines_are_ordered_by_page_then_position():
    page2 = group_into_lines(2, [Tok("second", 72, 100)], y_tol=3.0)
    page1 = group_into_lines(
        1, [Tok("b", 100, 50), Tok("a", 72, 50.5), Tok("first", 72, 200)], y_tol=3.0
    )
    assert lines_to_text(page2 + page1) == "a b\nfirst\nsecond"


def test_plain_text_is_read_as_is(tmp_path):
    report = tmp_path / "report.txt"
    report.write_text("DBMS 23 17 6\n", encoding="utf-8")
    assert read_text(report) == ("DBMS 23 17 6\n", False)


class _FakeOCR:
    def __init__(self, lang="en"):
        self.lang = lang

    def ocr(self, image):
        assert image.mode == "RGB"
        box = [[10, 20], [200, 20], [200, 40], [10, 40]]
        return [[[box, ("DBMS 23 17 6", 0.98)]]]


def test_image_is_read_through_ocr(tmp_path, monkeypatch):
    shot = tmp_path / "shot.png"
    Image.new("L", (64, 32), color=255).save(shot)
    monkeypatch.setattr(text_sources, "_lazy_import_paddle", lambda: (_FakeOCR, None, None))
    assert read_text(shot) == ("DBMS 23 17 6", True)
