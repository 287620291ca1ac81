from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# -------- Primary extractor (pdfplumber) --------
try:
    import pdfplumber  # type: ignore
except Exception:
    pdfplumber = None  # type: ignore


# -------- Optional OCR stack (PaddleOCR) --------
def _lazy_import_paddle():
    try:
        from paddleocr import PaddleOCR  # type: ignore
    except Exception:
        PaddleOCR = None  # type: ignore
    try:
        from pdf2image import convert_from_path  # type: ignore
    except Exception:
        convert_from_path = None  # type: ignore
    try:
        import numpy as np  # type: ignore
    except Exception:
        np = None  # type: ignore
    return PaddleOCR, convert_from_path, np


IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff", ".webp"}
FORCE_OCR_ENV = "ATTENDANCE_FORCE_OCR"


@dataclass
class Tok:
    text: str
    x0: float
    y0: float


@dataclass
class Line:
    page: int
    y: float
    toks: list[Tok]

    @property
    def text(self) -> str:
        return " ".join(t.text for t in sorted(self.toks, key=lambda t: t.x0))


def _normalize_text(s: str) -> str:
    s = s.replace("\xa0", " ")
    s = s.replace("\u2014", "-").replace("\u2212", "-")
    return s


def group_into_lines(page: int, toks: Iterable[Tok], y_tol: float) -> list[Line]:
    """Group tokens whose tops lie within ``y_tol`` of a line's first token."""
    lines: list[Line] = []
    for tok in sorted(toks, key=lambda t: (t.y0, t.x0)):
        for ln in lines:
            if abs(ln.y - tok.y0) <= y_tol:
                ln.toks.append(tok)
                break
        else:
            lines.append(Line(page, tok.y0, [tok]))
    lines.sort(key=lambda ln: ln.y)
    return lines


def lines_to_text(lines: Iterable[Line]) -> str:
    return "\n".join(ln.text for ln in sorted(lines, key=lambda ln: (ln.page, ln.y)))


def _lines_pdfplumber(path: Path, pages: set[int] | None = None, y_tol: float = 3.2) -> list[Line]:
    lines: list[Line] = []
    if pdfplumber is None:
        logger.warning("pdfplumber is not installed; cannot read %s", path)
        return lines
    try:
        with pdfplumber.open(path) as pdf:
            for pidx, page in enumerate(pdf.pages, start=1):
                if pages and pidx not in pages:
                    continue
                words = page.extract_words() or []
                toks = []
                for w in words:
                    t = _normalize_text(w.get("text", "") or "")
                    if t:
                        toks.append(Tok(t, float(w.get("x0", 0.0)), float(w.get("top", 0.0))))
                lines.extend(group_into_lines(pidx, toks, y_tol))
    except Exception as exc:
        logger.warning("pdfplumber failed on %s: %s", path, exc)
        return []
    return lines


def _ocr_image(ocr, image, np, page: int, y_tol: float) -> list[Line]:
    im = image.convert("RGB")
    arr = np.array(im) if np is not None else None  # type: ignore
    res = ocr.ocr(arr if arr is not None else im)  # type: ignore
    if not res or not res[0]:
        return []
    toks: list[Tok] = []
    for item in res[0]:
        try:
            box, (txt, _conf) = item
        except (TypeError, ValueError):
            continue
        if not txt:
            continue
        xs = [pt[0] for pt in box]
        ys = [pt[1] for pt in box]
        toks.append(Tok(_normalize_text(txt), float(min(xs)), float(min(ys))))
    return group_into_lines(page, toks, y_tol)


def _lines_ocr(
    path: Path, pages: set[int] | None = None, dpi: int = 300, y_tol: float = 6.0
) -> list[Line]:
    PaddleOCR, convert_from_path, np = _lazy_import_paddle()
    if PaddleOCR is None:
        logger.warning("paddleocr is not installed; OCR fallback unavailable for %s", path)
        return []

    try:
        ocr = PaddleOCR(lang="en")  # type: ignore
    except Exception as exc:
        logger.warning("could not initialise PaddleOCR: %s", exc)
        return []

    try:
        if path.suffix.lower() == ".pdf":
            if convert_from_path is None:
                logger.warning("pdf2image is not installed; cannot rasterise %s", path)
                return []
            images = convert_from_path(str(path), dpi=dpi)
        else:
            from PIL import Image  # type: ignore

            with Image.open(path) as img:
                images = [img.copy()]
    except Exception as exc:
        logger.warning("could not load images from %s: %s", path, exc)
        return []

    lines: list[Line] = []
    for pidx, im in enumerate(images, start=1):
        if pages and pidx not in pages:
            continue
        try:
            lines.extend(_ocr_image(ocr, im, np, pidx, y_tol))
        except Exception as exc:
            logger.warning("OCR failed on page %d of %s: %s", pidx, path, exc)
    return lines


def read_text(
    path: Path, prefer_ocr: bool = False, pages: set[int] | None = None
) -> tuple[str, bool]:
    """
    Raw text of an attendance report plus whether OCR produced it.

    Plain-text files are read as-is. PDFs go through pdfplumber first and fall
    back to OCR when no words come out (scanned pages); images always use OCR.
    """
    suffix = path.suffix.lower()
    if suffix not in IMAGE_SUFFIXES and suffix != ".pdf":
        return path.read_text(encoding="utf-8", errors="replace"), False

    force_ocr = prefer_ocr or os.environ.get(FORCE_OCR_ENV, "").strip() == "1"
    if suffix == ".pdf" and not force_ocr:
        lines = _lines_pdfplumber(path, pages)
        if lines:
            return lines_to_text(lines), False
    lines = _lines_ocr(path, pages)
    return lines_to_text(lines), bool(lines)
