from __future__ import annotations

import argparse
import csv
import json
import logging
import re
import sys
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from attendance_parser.calculator import (
    DEFAULT_MINIMUM,
    DEFAULT_RELIEF_MINIMUM,
    classes_needed,
    overall,
)
from attendance_parser.records import (
    DEFAULT_LIMITS,
    PLACEHOLDER_NAME,
    ParsedRecord,
    ParseLimits,
    apply_renames,
    infer_missing,
    percentage,
    records_from_candidates,
    records_to_dicts,
    repair_counts,
)
from attendance_parser.text_sources import read_text

logger = logging.getLogger(__name__)

# ---------- Legend ----------
LEGEND_MARKER = re.compile(r"(?i)^\s*legend\s*:")
LEGEND_ENTRY = re.compile(r"^(\S[\S ]*?)\s*[-\u2013:]\s*(.+)$")
CLASS_IN_CHARGE = "CLASS IN CHARGE"
CL_CODE = "CL"

# Mixed letters and digits, at least 5 long (e.g. 21CSC201J)
CODE_TOKEN = re.compile(r"\b(?=[A-Za-z0-9]*[A-Za-z])(?=[A-Za-z0-9]*\d)[A-Za-z0-9]{5,}\b")
SHORT_CODE = re.compile(r"[A-Za-z]{2,6}")
SHORT_NAME = re.compile(r"[A-Za-z]{1,2}")
SINGLE_LETTER = re.compile(r"[A-Za-z]")
HEADER_KEYWORD = re.compile(r"(?i)th|tc|ph|ah|total|present|absent|code|percent|pct")

# ---------- Noise ----------
LAST_UPDATED = re.compile(r"(?i)last\s*updated")
HEADER_ROW = re.compile(
    r"(?i)^(?:code\b|th\b|tc\b|ph\b|ah\b|%|description\b|max\.?\s*hours?|att\.?\s*hours?"
    r"|absent\b|average\b|od/?ml|total\b)"
)
HAS_LETTER = re.compile(r"[A-Za-z]")

# ---------- Row shapes ----------
PORTAL_ROW = re.compile(
    r"^(.*?)\s+(\d{1,9})\s+(\d{1,9})\s+(\d{1,9})(?:\s+\d+(?:\.\d+)?(?:\s+\d+(?:\.\d+)?)?)?\s*$"
)
CL_ROW = re.compile(
    r"(?i)^cl\b[\s:\u2013\-]*(\d{1,9}(?:\s+\d{1,9}){1,2})(?:\s+\d+(?:\.\d+)?\s*%|\s+\d+\.\d+)?\s*$"
)
LABELS = {
    "total": re.compile(r"(?i)\b(?:th|tc|total)\b\s*[:\-]?\s*(\d{1,9})(?!\d)"),
    "present": re.compile(r"(?i)\b(?:ph|present)\b\s*[:\-]?\s*(\d{1,9})(?!\d)"),
    "absent": re.compile(r"(?i)\b(?:ah|absent)\b\s*[:\-]?\s*(\d{1,9})(?!\d)"),
}
KEYWORD_HINTS = (
    ("total", re.compile(r"(?i)\b(?:total|th|tc)\b")),
    ("present", re.compile(r"(?i)\b(?:present|ph)\b")),
    ("absent", re.compile(r"(?i)\b(?:absent|ah)\b")),
)
PERCENT_NUM = re.compile(r"\d+(?:\.\d+)?\s*%")
CLOCK_TIME = re.compile(r"\b\d{1,2}:\d{2}(?::\d{2})?(?:\s*[AaPp]\.?[Mm]\.?)?")
# Standalone counts: not glued to letters, not part of a decimal, at most 9 digits
PLAIN_INT = re.compile(r"(?<!\w)(?<!\d\.)\d{1,9}(?!\w)(?!\.\d)")
FIRST_DIGIT = re.compile(r"\d")


@dataclass
class _Candidate:
    name: str | None
    total: int | None = None
    present: int | None = None
    absent: int | None = None
    code: str | None = None


@dataclass
class _ParseContext:
    legend: dict[str, str]
    limits: ParseLimits
    next_index: int = 1

    def placeholder(self) -> str:
        name = PLACEHOLDER_NAME.format(n=self.next_index)
        self.next_index += 1
        return name


@dataclass
class LineOutcome:
    """What the parser decided for one line (for debugging and tests)."""

    index: int
    text: str
    strategy: str | None = None
    consumed: int = 1
    record: ParsedRecord | None = None
    reason: str | None = None


Strategy = Callable[[Sequence[str], int, _ParseContext], "tuple[_Candidate, int] | None"]


# ---------- Legend extractor ----------


def extract_legend(text: str) -> tuple[dict[str, str], list[str]]:
    """
    Split ``text`` at the first ``Legend:`` line.

    Returns the code -> display name map built from the lines after the
    marker, and the trimmed lines before it (the only region rows are parsed
    from). Without a marker the map is empty and every line is kept.
    """
    lines = [ln.strip() for ln in text.splitlines()]
    start = next((i for i, ln in enumerate(lines) if LEGEND_MARKER.match(ln)), None)
    if start is None:
        return {}, lines

    legend: dict[str, str] = {}
    for ln in lines[start + 1 :]:
        if not ln:
            continue
        m = LEGEND_ENTRY.match(ln)
        if not m:
            continue
        left, right = m.group(1).strip(), m.group(2).strip()
        code_m = CODE_TOKEN.search(left)
        if code_m:
            key = code_m.group(0)
        elif left.upper() == CL_CODE:
            key = CL_CODE
        else:
            continue
        legend[key.upper()] = CL_CODE if right.upper() == CLASS_IN_CHARGE else right
    return legend, lines[:start]


# ---------- Noise ----------


def _noise_reason(line: str) -> str | None:
    if HEADER_ROW.match(line):
        return "header row"
    if not HAS_LETTER.search(line):
        return "no letters"
    return None


def _candidate_lines(lines: Iterable[str]) -> list[str]:
    return [ln.strip() for ln in lines if ln.strip() and not LAST_UPDATED.search(ln)]


# ---------- Helpers ----------


def _clean_name(s: str) -> str:
    return re.sub(r"\s{2,}", " ", s).strip()


def _code_of(name: str | None) -> str | None:
    if not name:
        return None
    if name.strip().upper() == CL_CODE:
        return CL_CODE
    m = CODE_TOKEN.search(name)
    return m.group(0).upper() if m else None


def _plain_integers(line: str) -> list[int]:
    s = PERCENT_NUM.sub(" ", line)
    s = CLOCK_TIME.sub(" ", s)
    return [int(n) for n in PLAIN_INT.findall(s)]


def _merge_single_letters(tokens: list[str]) -> list[str]:
    """['C', 'L', '10'] -> ['CL', '10']"""
    merged: list[str] = []
    run = ""
    for tok in tokens:
        if SINGLE_LETTER.fullmatch(tok):
            run += tok
            continue
        if run:
            merged.append(run)
            run = ""
        merged.append(tok)
    if run:
        merged.append(run)
    return merged


def _recover_subject(line: str) -> tuple[str | None, str | None, bool]:
    """
    Find a subject name/code on an unlabeled line.

    Returns (name, code, has_subject_token). The flag gates the numeric
    fallback so clock or battery lines never become records.
    """
    has_subject = CODE_TOKEN.search(line) is not None
    name: str | None = None
    code: str | None = None

    digit = FIRST_DIGIT.search(line)
    if digit and digit.start() > 0:
        prefix = line[: digit.start()].strip()
        if prefix:
            name = prefix
            if SHORT_CODE.fullmatch(prefix):
                has_subject = True
    if name:
        return name, code, has_subject

    stripped = [re.sub(r"[^A-Za-z0-9]", "", t) for t in line.split()]
    tokens = _merge_single_letters(stripped)
    code_like = next((t for t in tokens if CODE_TOKEN.fullmatch(t)), None)
    if code_like:
        return code_like, code_like.upper(), True

    short = next((t for t in tokens if t.upper() == CL_CODE), None)
    if short is None:
        short = next(
            (t for t in tokens if SHORT_CODE.fullmatch(t) and not HEADER_KEYWORD.fullmatch(t)),
            None,
        )
    if short:
        return short, CL_CODE if short.upper() == CL_CODE else None, True
    return None, None, has_subject


# ---------- Strategies ----------


def _try_portal_row(lines: Sequence[str], index: int, ctx: _ParseContext):
    # DATA STRUCTURES AND ALGORITHMS 23 17 6 73.91 0.00
    m = PORTAL_ROW.match(lines[index])
    if not m:
        return None
    name = _clean_name(m.group(1))
    total, present, absent = int(m.group(2)), int(m.group(3)), int(m.group(4))
    if not name or present > total or absent > total:
        return None
    return _Candidate(name, total, present, absent), 1


def _try_cl_row(lines: Sequence[str], index: int, ctx: _ParseContext):
    m = CL_ROW.match(lines[index])
    if not m:
        return None
    nums = [int(n) for n in m.group(1).split()]
    if len(nums) == 3:
        total, present, absent = nums
    else:
        total, present = max(nums), min(nums)
        absent = max(0, total - present)
    return _Candidate(ctx.legend.get(CL_CODE, CL_CODE), total, present, absent, CL_CODE), 1


def _try_labeled(lines: Sequence[str], index: int, ctx: _ParseContext):
    line = lines[index]
    found = {key: pat.search(line) for key, pat in LABELS.items()}
    matches = [m for m in found.values() if m]
    if not matches:
        return None
    first = min(m.start() for m in matches)
    counts = {key: int(m.group(1)) if m else None for key, m in found.items()}
    name = _clean_name(line[:first]) or None
    return _Candidate(name, counts["total"], counts["present"], counts["absent"]), 1


def _try_subject_numeric(lines: Sequence[str], index: int, ctx: _ParseContext):
    line = lines[index]
    name, code, has_subject = _recover_subject(line)
    if not has_subject:
        return None

    nums = _plain_integers(line)
    consumed = 1
    if len(nums) < 3 and index + 1 < len(lines):
        # subject on this line, counts on the next
        next_nums = _plain_integers(lines[index + 1])
        if len(next_nums) >= 2:
            nums = next_nums
            consumed = 2

    cand = _Candidate(name, code=code)
    if len(nums) >= 3:
        first = nums[:3]
        total = max(first)
        rest = list(first)
        rest.remove(total)
        present, absent = max(rest), min(rest)
        if present + absent != total:
            absent = max(0, total - present)
        cand.total, cand.present, cand.absent = total, present, absent
    elif len(nums) == 2:
        cand.total, cand.present = max(nums), min(nums)
    elif len(nums) == 1:
        field_name = next((k for k, pat in KEYWORD_HINTS if pat.search(line)), "total")
        setattr(cand, field_name, nums[0])
    else:
        return None
    return cand, consumed


STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("portal-row", _try_portal_row),
    ("cl-row", _try_cl_row),
    ("labeled", _try_labeled),
    ("subject-numeric", _try_subject_numeric),
)


# ---------- Repair / validation ----------


def _finalize(cand: _Candidate, ctx: _ParseContext) -> tuple[ParsedRecord | None, str | None]:
    total, present, absent = infer_missing(cand.total, cand.present, cand.absent)
    if total is None or present is None or absent is None:
        return None, "incomplete counts"
    total, present, absent = repair_counts(total, present, absent)

    code = cand.code or _code_of(cand.name)
    name = cand.name
    if code and code in ctx.legend:
        name = ctx.legend[code]
    elif not name or (SHORT_NAME.fullmatch(name) and name.upper() != CL_CODE):
        name = None

    limits = ctx.limits
    if total > limits.max_total:
        return None, f"total {total} exceeds {limits.max_total}"
    if present > total or absent > total:
        return None, "counts exceed total"
    if name is None and total > limits.max_placeholder_total:
        return None, f"unnamed row with total {total} exceeds {limits.max_placeholder_total}"

    return ParsedRecord(name or ctx.placeholder(), total, present, absent, code), None


def _scan(lines: Sequence[str], ctx: _ParseContext) -> list[LineOutcome]:
    outcomes: list[LineOutcome] = []
    i = 0
    while i < len(lines):
        line = lines[i]
        outcome = LineOutcome(i, line)
        outcomes.append(outcome)

        outcome.reason = _noise_reason(line)
        if outcome.reason:
            i += 1
            continue

        for strategy_name, attempt in STRATEGIES:
            hit = attempt(lines, i, ctx)
            if hit is None:
                continue
            cand, outcome.consumed = hit
            outcome.strategy = strategy_name
            outcome.record, outcome.reason = _finalize(cand, ctx)
            break
        else:
            outcome.reason = "no strategy matched"

        if outcome.reason:
            logger.debug("line %d skipped (%s): %r", i, outcome.reason, line)
        i += outcome.consumed
    return outcomes


def deduplicate(records: Iterable[ParsedRecord]) -> list[ParsedRecord]:
    """Drop records whose name (case-insensitive) was already seen."""
    seen: set[str] = set()
    out: list[ParsedRecord] = []
    for rec in records:
        key = rec.name.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(rec)
    return out


def trace_attendance_text(text: str, *, limits: ParseLimits = DEFAULT_LIMITS) -> list[LineOutcome]:
    legend, body = extract_legend(text)
    ctx = _ParseContext(legend=legend, limits=limits)
    return _scan(_candidate_lines(body), ctx)


def parse_attendance_text(text: str, *, limits: ParseLimits = DEFAULT_LIMITS) -> list[ParsedRecord]:
    """
    Recover attendance records from OCR-like text of an attendance table.

    Never raises on string input; unparsable lines are skipped and
    inconsistent counts repaired. Records come back in source order with
    duplicate names removed.
    """
    outcomes = trace_attendance_text(text, limits=limits)
    return deduplicate(o.record for o in outcomes if o.record is not None)


# ---------- CLI ----------


@dataclass
class FileResult:
    records: list[ParsedRecord]
    text: str
    ocr_used: bool
    source: str = "parser"


def run_file(
    path: Path,
    prefer_ocr: bool = False,
    limits: ParseLimits = DEFAULT_LIMITS,
    candidates: object = None,
) -> FileResult:
    """
    Records for one report. A non-empty structured candidate list wins over
    the text parser; the file text is still read so it can be shown.
    """
    text, ocr_used = read_text(path, prefer_ocr=prefer_ocr)
    if candidates is not None:
        records = records_from_candidates(candidates)
        if records:
            return FileResult(records, text, ocr_used, source="candidates")
    return FileResult(parse_attendance_text(text, limits=limits), text, ocr_used)


CSV_HEADER = ("Subject", "Total", "Present", "Absent", "Percentage")


def write_csv(path: Path, records: Iterable[ParsedRecord]) -> None:
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(CSV_HEADER)
        for rec in records:
            writer.writerow([rec.name, rec.total, rec.present, rec.absent, f"{rec.percentage:.2f}"])


def _parse_rename(s: str) -> tuple[str, str]:
    key, sep, value = s.partition("=")
    if not sep or not key.strip() or not value.strip():
        raise argparse.ArgumentTypeError(f"expected CODE=NAME, got {s!r}")
    return key.strip(), value.strip()


def _advice(present: int, total: int, minimum: float) -> str:
    calc = classes_needed(present, total, minimum)
    if calc.is_above_minimum:
        return f"can miss {calc.can_miss} (>= {minimum:g}%)"
    return f"attend {calc.need_to_attend} more (>= {minimum:g}%)"


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="attendance-parser")
    parser.add_argument("inputs", nargs="+", help="Text, PDF or image file(s)")
    parser.add_argument(
        "--minimum", type=float, default=DEFAULT_MINIMUM, help="Required attendance percentage"
    )
    parser.add_argument(
        "--relief",
        type=float,
        default=DEFAULT_RELIEF_MINIMUM,
        help="Relaxed percentage (e.g. with medical relief) to report alongside",
    )
    parser.add_argument(
        "--rename",
        action="append",
        type=_parse_rename,
        default=[],
        metavar="CODE=NAME",
        help="Rename a subject by code (or by name when it has no code)",
    )
    parser.add_argument(
        "--candidates",
        default=None,
        help="JSON file with structured subjects from an extraction service",
    )
    parser.add_argument("--json", action="store_true", help="Print records as JSON")
    parser.add_argument("--out", default=None, help="Optional JSON output path")
    parser.add_argument("--csv", default=None, help="Optional CSV output path")
    parser.add_argument("--max-total", type=int, default=DEFAULT_LIMITS.max_total)
    parser.add_argument(
        "--max-placeholder-total", type=int, default=DEFAULT_LIMITS.max_placeholder_total
    )
    parser.add_argument("--show-text", action="store_true", help="Echo the recovered raw text")
    parser.add_argument("--verbose", action="store_true", help="Log parser decisions")
    parser.add_argument(
        "--force-ocr",
        action="store_true",
        help="Force PaddleOCR even if pdfplumber finds text",
    )
    args = parser.parse_args(argv if argv is not None else sys.argv[1:])

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if not 0 < args.minimum < 100 or not 0 < args.relief < 100:
        parser.error("--minimum and --relief must be between 0 and 100")

    limits = ParseLimits(args.max_total, args.max_placeholder_total)
    renames = dict(args.rename)
    candidates = None
    if args.candidates:
        with open(args.candidates, encoding="utf-8") as fh:
            candidates = json.load(fh)

    collected: dict[str, list[dict]] = {}
    exported: list[ParsedRecord] = []
    for inp in args.inputs:
        p = Path(inp)
        base = p.name
        if not p.exists():
            print(f"File not found: {p}")
            continue

        result = run_file(p, prefer_ocr=args.force_ocr, limits=limits, candidates=candidates)
        records = apply_renames(result.records, renames)
        collected[base] = records_to_dicts(records)
        exported.extend(records)

        if args.json:
            continue

        print(f"Results for {base}")
        if args.show_text:
            print("  --- text ---")
            for ln in result.text.splitlines():
                print(f"  | {ln}")
            print("  ------------")

        if not records:
            print(" [no subjects detected]")
        for rec in records:
            label = f"{rec.name} [{rec.code}]" if rec.code and rec.code != rec.name else rec.name
            print(
                f"  {label} — {rec.present}/{rec.total} present, {rec.absent} absent"
                f" ({rec.percentage:.2f}%) — {_advice(rec.present, rec.total, args.minimum)};"
                f" {_advice(rec.present, rec.total, args.relief)}"
            )
        if records:
            present_all, total_all = overall(records)
            print(
                f"  Overall — {present_all}/{total_all}"
                f" ({percentage(present_all, total_all):.2f}%)"
                f" — {_advice(present_all, total_all, args.minimum)}"
            )

        if args.verbose:
            print(f"[verbose] source: {result.source}, fallback_ocr_activated: {result.ocr_used}")
        print(f"Parsed {base} ({len(records)} subjects)")

    if args.json:
        print(json.dumps(collected, indent=2))
    if args.out:
        Path(args.out).write_text(json.dumps(collected, indent=2), encoding="utf-8")
    if args.csv:
        write_csv(Path(args.csv), exported)


if __name__ == "__main__":
    main()
