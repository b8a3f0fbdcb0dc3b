#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
pkg-size-report — Markdown package size report for pull-request comments.

Features:
- Compares per-file sizes of a package at a base ref vs a head ref
- Percentage deltas with direction arrows (↑/↓) per file, for the total and for the tarball
- Sort by size delta, base size, head size or path (desc/asc)
- Unchanged files shown inline, hidden, or collapsed into a <details> block
- Hide files by extended glob (*, ?, [...], {a,b}) into their own <details> block
- Reads size snapshots as JSON, prints Markdown (and optionally a JSON summary)
- Zero external Python deps

Exit codes:
  0 = report written
  2 = configuration/runtime error

MIT © pkg-size-report authors
"""

import argparse
import functools
import json
import os
import re
import sys
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

PROG = "pkg-size-report"

# -------------------------------
# Constants
# -------------------------------
DEC_BASE = 1000
SIZE_UNITS = ["B", "kB", "MB", "GB", "TB", "PB", "EB", "ZB", "YB"]

UNCHANGED_MODES = ("show", "hide", "collapse")
SORT_FIELDS = ("size_delta", "base_size", "head_size", "path")
SORT_ALIASES = {"delta": "size_delta"}
SORT_ORDERS = ("desc", "asc")

EM_DASH = "—"
ARROW_UP = "↑"
ARROW_DOWN = "↓"

# -------------------------------
# Data
# -------------------------------
class SizeSnapshot:
    """One side of the comparison: a ref, its tarball size and (path, size) pairs."""

    def __init__(self, repo_url: str, ref_name: str, tarball_size: int, files: Iterable[Tuple[str, int]]):
        self.repo_url = repo_url
        self.ref_name = ref_name
        self.tarball_size = tarball_size
        self.files = tuple(files)


class FileRecord:
    def __init__(self, path: str, link: str, base_size: Optional[int] = None, head_size: Optional[int] = None):
        self.path = path
        self.link = link
        self.base_size = base_size
        self.head_size = head_size

    @property
    def size_delta(self) -> int:
        return (self.head_size or 0) - (self.base_size or 0)

    @property
    def unchanged(self) -> bool:
        return self.base_size == self.head_size

    def __repr__(self) -> str:
        return f"FileRecord({self.path!r}, base_size={self.base_size!r}, head_size={self.head_size!r})"


class ReportOptions:
    def __init__(self,
                 unchanged_files: str = "collapse",
                 hide_files: Optional[str] = None,
                 sort_by: str = "size_delta",
                 sort_order: str = "desc",
                 signature: str = ""):
        self.unchanged_files = unchanged_files
        self.hide_files = hide_files or None
        self.sort_by = SORT_ALIASES.get(sort_by, sort_by)
        self.sort_order = sort_order
        self.signature = signature

def check_options(options: ReportOptions) -> None:
    if options.unchanged_files not in UNCHANGED_MODES:
        raise ValueError(f"unchanged files mode must be one of {', '.join(UNCHANGED_MODES)}, got {options.unchanged_files!r}")
    if options.sort_by not in SORT_FIELDS:
        raise ValueError(f"sort field must be one of {', '.join(SORT_FIELDS)}, got {options.sort_by!r}")
    if options.sort_order not in SORT_ORDERS:
        raise ValueError(f"sort order must be one of {', '.join(SORT_ORDERS)}, got {options.sort_order!r}")
    if options.hide_files:
        compile_glob(options.hide_files)

# -------------------------------
# Size / percentage formatting
# -------------------------------
def format_bytes(n: int) -> str:
    """Metric (base 1000) size with one decimal, e.g. 1500 -> "1.5 kB", 1000 -> "1 kB"."""
    if n < DEC_BASE:
        return f"{n} B"
    exp = 0
    while exp < len(SIZE_UNITS) - 1 and n >= DEC_BASE ** (exp + 1):
        exp += 1
    value = (Decimal(n) / Decimal(DEC_BASE ** exp)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    text = f"{value:f}"
    if text.endswith(".0"):
        text = text[:-2]
    return f"{text} {SIZE_UNITS[exp]}"

def _significant(value: Decimal, digits: int = 3) -> Decimal:
    if value == 0:
        return value
    quantum = Decimal(1).scaleb(value.adjusted() - digits + 1)
    return value.quantize(quantum, rounding=ROUND_HALF_UP).normalize()

def format_percent(fraction: float) -> str:
    """
    Render a fraction as a percentage with at most 3 significant digits.
    Fractions under 0.1% round to 4 places, under 1% to 3,
    otherwise 2.
    """
    magnitude = abs(fraction)
    if magnitude < 0.001:
        places = Decimal("0.0001")
    elif magnitude < 0.01:
        places = Decimal("0.001")
    else:
        places = Decimal("0.01")
    rounded = Decimal(str(fraction)).quantize(places, rounding=ROUND_HALF_UP)
    pct = _significant(rounded * 100)
    if pct == 0:
        return "0%"
    return f"{pct:,f}%"

def change_symbol(from_size: Optional[int], to_size: Optional[int]) -> str:
    if from_size is None or to_size is None or from_size == to_size:
        return ""
    return ARROW_DOWN if from_size > to_size else ARROW_UP

def format_delta(from_size: int, to_size: int) -> str:
    """Percentage change from `from_size` to `to_size` with an arrow; empty when equal."""
    if from_size == to_size:
        return ""
    if from_size == 0:
        return "∞%" + ARROW_UP
    fraction = (to_size - from_size) / from_size
    return format_percent(abs(fraction)) + change_symbol(from_size, to_size)

# -------------------------------
# Glob matching (extended: *, ?, [...], {a,b})
# -------------------------------
def compile_glob(pattern: str) -> "re.Pattern":
    out: List[str] = []
    depth = 0
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "*":
            out.append(".*")
        elif ch == "?":
            out.append(".")
        elif ch == "[":
            end = pattern.find("]", i + 2)
            if end < 0:
                out.append(re.escape(ch))
            else:
                body = pattern[i + 1:end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end
        elif ch == "{":
            depth += 1
            out.append("(?:")
        elif ch == "}" and depth:
            depth -= 1
            out.append(")")
        elif ch == "," and depth:
            out.append("|")
        else:
            out.append(re.escape(ch))
        i += 1
    if depth:
        raise ValueError(f"Unbalanced '{{' in glob: {pattern!r}")
    return re.compile("^" + "".join(out) + r"\Z")

# -------------------------------
# Markdown helpers
# -------------------------------
def code(text: str) -> str:
    return f"`{text}`"

def link(text: str, href: str) -> str:
    return f"[{text}]({href})"

def sup(text: str) -> str:
    return f"<sup>{text}</sup>" if text else ""

def sub(text: str) -> str:
    return f"<sub>{text}</sub>" if text else ""

def details(summary: str, body: str) -> str:
    return f"<details><summary>{summary}</summary>\n\n{body}\n</details>"

def render_table(rows: Sequence[Sequence[str]], align: Sequence[str]) -> str:
    """First row is the header; `align` holds "r" for right-aligned columns, "" for left."""
    header, body = rows[0], rows[1:]
    lines = ["| " + " | ".join(header) + " |"]
    lines.append("|" + "|".join("---:" if a == "r" else "---" for a in align) + "|")
    for row in body:
        lines.append("| " + " | ".join(row) + " |")
    return "\n".join(lines)

# -------------------------------
# Merge / sort
# -------------------------------
def file_link(snapshot: SizeSnapshot, path: str) -> str:
    return link(code(path), snapshot.repo_url + "/blob/" + snapshot.ref_name + path)

def merge_files(base: SizeSnapshot, head: SizeSnapshot) -> Tuple[List[FileRecord], int, int]:
    """
    Returns (records, base_total, head_total). One record per path seen in
    either snapshot; links always point at the base ref. Totals are plain
    sums over each snapshot's file list.
    """
    records: Dict[str, FileRecord] = {}
    totals: List[int] = []
    for side, snapshot in (("base_size", base), ("head_size", head)):
        total = 0
        for path, size in snapshot.files:
            record = records.get(path)
            if record is None:
                record = records[path] = FileRecord(path, file_link(base, path))
            setattr(record, side, size)
            total += size
        totals.append(total)
    return list(records.values()), totals[0], totals[1]

def _compare_records(field: str):
    def cmp(a: FileRecord, b: FileRecord) -> int:
        if field != "path":
            av, bv = getattr(a, field), getattr(b, field)
            # missing sizes fall through to the path tie-break
            if av is not None and bv is not None and av != bv:
                return -1 if av > bv else 1
        return (a.path > b.path) - (a.path < b.path)
    return cmp

def sort_records(records: Iterable[FileRecord], sort_by: str, sort_order: str) -> List[FileRecord]:
    ordered = sorted(records, key=functools.cmp_to_key(_compare_records(sort_by)))
    if sort_order == "asc":
        ordered.reverse()
    return ordered

def partition(records: Iterable[FileRecord], predicate) -> Tuple[List[FileRecord], List[FileRecord]]:
    matched: List[FileRecord] = []
    rest: List[FileRecord] = []
    for r in records:
        (matched if predicate(r) else rest).append(r)
    return matched, rest

# -------------------------------
# Report
# -------------------------------
def size_cell(size: Optional[int]) -> str:
    return EM_DASH if size is None else code(format_bytes(size))

def file_row(record: FileRecord) -> List[str]:
    after = size_cell(record.head_size)
    if record.base_size is not None and record.head_size is not None:
        after = sup(format_delta(record.base_size, record.head_size)) + after
    return [record.link, size_cell(record.base_size), after]

def _size_table(summary: str, records: List[FileRecord]) -> str:
    if not records:
        return ""
    table = render_table([["File", "Size"]] + [[r.link, size_cell(r.base_size)] for r in records], ["", "r"])
    return details(summary, table)

def build_report(options: ReportOptions, base: SizeSnapshot, head: SizeSnapshot) -> str:
    records, base_total, head_total = merge_files(base, head)
    total_delta = format_delta(base_total, head_total)

    files = sort_records(records, options.sort_by, options.sort_order)

    hidden: List[FileRecord] = []
    if options.hide_files:
        hide_re = compile_glob(options.hide_files)
        hidden, files = partition(files, lambda r: bool(hide_re.match(r.path)))

    unchanged, changed = partition(files, lambda r: r.unchanged)
    show_unchanged = options.unchanged_files == "show"
    visible = changed + unchanged if show_unchanged else changed

    total_label = "**Total**" if show_unchanged else "**Total** " + sub("_(Includes all files)_")
    rows = [["File", "Before", "After"]]
    rows.extend(file_row(r) for r in visible)
    rows.append([total_label, size_cell(base_total), sup(total_delta) + size_cell(head_total)])
    table = render_table(rows, ["", "r", "r"])

    unchanged_table = ""
    if options.unchanged_files == "collapse":
        unchanged_table = _size_table("Unchanged files", unchanged)
    hidden_table = _size_table("Hidden files", hidden)

    header = f"### 📊 Package size report&nbsp;&nbsp;&nbsp;<kbd>{total_delta or 'No changes'}</kbd>"
    tarball = (f"**Tarball size** {size_cell(base.tarball_size)} → "
               f"{sup(format_delta(base.tarball_size, head.tarball_size))}{size_cell(head.tarball_size)}")

    sections = [header, tarball, table, unchanged_table, hidden_table, options.signature]
    return "\n\n".join(s for s in sections if s)

def report_payload(options: ReportOptions, base: SizeSnapshot, head: SizeSnapshot) -> Dict[str, object]:
    records, base_total, head_total = merge_files(base, head)
    hide_re = compile_glob(options.hide_files) if options.hide_files else None
    return {
        "base_ref": base.ref_name,
        "head_ref": head.ref_name,
        "base_total_bytes": base_total,
        "head_total_bytes": head_total,
        "delta_bytes": head_total - base_total,
        "delta": format_delta(base_total, head_total),
        "base_tarball_bytes": base.tarball_size,
        "head_tarball_bytes": head.tarball_size,
        "files": [
            {
                "path": r.path,
                "base_bytes": r.base_size,
                "head_bytes": r.head_size,
                "delta_bytes": r.size_delta,
                "hidden": bool(hide_re and hide_re.match(r.path)),
            }
            for r in sort_records(records, options.sort_by, options.sort_order)
        ],
    }

# -------------------------------
# Snapshot loading
# -------------------------------
def _is_size(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0

def snapshot_from_dict(raw: Dict, source: str = "<snapshot>") -> SizeSnapshot:
    """
    Accepts the size tool's native shape ({"ref": {"repo": {"html_url"}, "ref"}, ...})
    or a flat ref ({"ref": {"repoUrl", "refName"}, ...}).
    """
    try:
        ref = raw["ref"]
        if "repo" in ref:
            repo_url, ref_name = ref["repo"]["html_url"], ref["ref"]
        else:
            repo_url, ref_name = ref["repoUrl"], ref["refName"]
        tarball_size = raw["tarballSize"]
        files = [(item["path"], item["size"]) for item in raw["files"]]
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed size snapshot {source}: missing or invalid {e}") from e
    if not _is_size(tarball_size):
        raise ValueError(f"Malformed size snapshot {source}: tarballSize must be a non-negative integer, got {tarball_size!r}")
    for path, size in files:
        if not path:
            raise ValueError(f"Malformed size snapshot {source}: empty file path")
        if not _is_size(size):
            raise ValueError(f"Malformed size snapshot {source}: size of {path!r} must be a non-negative integer, got {size!r}")
    return SizeSnapshot(repo_url, ref_name, tarball_size, files)

def load_snapshot(path: str) -> SizeSnapshot:
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    return snapshot_from_dict(raw, source=path)

# -------------------------------
# CLI
# -------------------------------
def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog=PROG, description="pkg-size-report — Markdown package size report for PR comments")
    p.add_argument("base", help="Base size snapshot (JSON).")
    p.add_argument("head", help="Head size snapshot (JSON).")
    p.add_argument("--unchanged-files", default=os.getenv("PSR_UNCHANGED_FILES", "collapse"),
                   help="show | hide | collapse (default collapse, env PSR_UNCHANGED_FILES).")
    p.add_argument("--hide-files", default=os.getenv("PSR_HIDE_FILES", ""),
                   help="Extended glob of files to move into the hidden table, e.g. '*.{map,d.ts}'.")
    p.add_argument("--sort-by", default=os.getenv("PSR_SORT_BY", "delta"),
                   help="delta | base_size | head_size | path (default delta, env PSR_SORT_BY).")
    p.add_argument("--sort-order", default=os.getenv("PSR_SORT_ORDER", "desc"),
                   help="desc | asc (default desc, env PSR_SORT_ORDER).")
    p.add_argument("--signature", default=os.getenv("PSR_SIGNATURE", ""),
                   help="Text appended verbatim at the end of the report.")
    p.add_argument("--output", default=None, help="Write the report to this file instead of stdout.")
    p.add_argument("--json", action="store_true", help="Also print JSON payload.")
    return p

def main(argv: Optional[List[str]] = None) -> int:
    try:
        args = build_parser().parse_args(argv)

        options = ReportOptions(
            unchanged_files=args.unchanged_files,
            hide_files=args.hide_files,
            sort_by=args.sort_by,
            sort_order=args.sort_order,
            signature=args.signature,
        )
        check_options(options)

        base = load_snapshot(args.base)
        head = load_snapshot(args.head)

        report = build_report(options, base, head)
        if args.output:
            with open(args.output, "w", encoding="utf-8") as f:
                f.write(report + "\n")
            print(f"[{PROG}] wrote report to {args.output}", file=sys.stderr)
        else:
            print(report)

        if args.json:
            print("\n===JSON===")
            print(json.dumps(report_payload(options, base, head), indent=2, ensure_ascii=False))

        return 0

    except Exception as e:
        print(f"[{PROG}] ERROR: {e}", file=sys.stderr)
        return 2

if __name__ == "__main__":
    sys.exit(main())
