from __future__ import annotations

import argparse
import logging
import re
from pathlib import Path
from typing import List, Optional, Pattern, Set

from attendance_parser.parse_attendance import LineOutcome, extract_legend, trace_attendance_text
from attendance_parser.text_sources import read_text


def parse_pages_arg(p: Optional[str]) -> Optional[Set[int]]:
    if not p:
        return None
    parts: List[int] = []
    for chunk in p.split(","):
        chunk_s = chunk.strip()
        if not chunk_s:
            continue
        if "-" in chunk_s:
            a, b = chunk_s.split("-", 1)
            try:
                a_i, b_i = int(a), int(b)
            except ValueError:
                continue
            start, end = (a_i, b_i) if a_i <= b_i else (b_i, a_i)
            parts.extend(range(start, end + 1))
        else:
            try:
                parts.append(int(chunk_s))
            except ValueError:
                continue
    return set(parts)


def format_outcome(o: LineOutcome) -> str:
    head = f"[line {o.index}] {o.text}"
    if o.consumed > 1:
        head += f"  (+{o.consumed - 1} line consumed)"
    if o.record is not None:
        r = o.record
        verdict = (
            f"{o.strategy}: name={r.name!r} code={r.code!r} total={r.total}"
            f" present={r.present} absent={r.absent} pct={r.percentage:.2f}"
        )
    elif o.strategy:
        verdict = f"{o.strategy}: rejected ({o.reason})"
    else:
        verdict = f"skipped ({o.reason})"
    return f"{head}\n   -> {verdict}"


def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(
        prog="attendance-debug", description="Dump per-line parser decisions for debugging"
    )
    ap.add_argument("input", help="Text, PDF or image file")
    ap.add_argument("--pages", help="PDF pages to include, e.g. 1-2,4", default=None)
    ap.add_argument("--grep", help="Regex to filter lines", default=None)
    ap.add_argument("--force-ocr", action="store_true", help="Force PaddleOCR")
    args = ap.parse_args(argv)

    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    path = Path(args.input)
    if not path.exists():
        print("File not found:", path)
        return

    rx: Optional[Pattern[str]] = re.compile(args.grep, re.I) if args.grep else None
    text, ocr_used = read_text(path, prefer_ocr=args.force_ocr, pages=parse_pages_arg(args.pages))
    print(f"[source] ocr={ocr_used}")

    legend, _body = extract_legend(text)
    for code, name in legend.items():
        print(f"[legend] {code} = {name}")

    for o in trace_attendance_text(text):
        if rx and not rx.search(o.text):
            continue
        print(format_outcome(o))
        print("-" * 60)


if __name__ == "__main__":
    main()
