#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
sheet_parser.py
Turns the CSV text published by a spreadsheet export into rows of string cells.

Rules:
- Line endings are normalized (\\r\\n and \\r become \\n) before scanning.
- A doubled quote inside a quoted field is one literal quote.
- A lone quote toggles the quoted state and is not kept.
- Commas and newlines inside quotes are kept verbatim.
- Blank lines (including the trailing one) never become rows.
"""

from typing import List, Tuple

DELIMITER = ","
QUOTE = '"'
NEWLINE = "\n"


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def parse_sheet_text(text: str) -> List[List[str]]:
    """Parse delimited text into an ordered list of rows."""
    if not text:
        return []

    source = normalize_newlines(text)
    rows: List[List[str]] = []
    row: List[str] = []
    cell: List[str] = []
    in_quotes = False
    i = 0
    n = len(source)

    while i < n:
        ch = source[i]
        if ch == QUOTE:
            if in_quotes and i + 1 < n and source[i + 1] == QUOTE:
                cell.append(QUOTE)
                i += 2
                continue
            in_quotes = not in_quotes
        elif ch == DELIMITER and not in_quotes:
            row.append("".join(cell))
            cell = []
        elif ch == NEWLINE and not in_quotes:
            # blank line: nothing accumulated
            if cell or row:
                row.append("".join(cell))
                rows.append(row)
            cell = []
            row = []
        else:
            cell.append(ch)
        i += 1

    # flush the last row when the text does not end with a newline
    if cell or row:
        row.append("".join(cell))
        rows.append(row)

    return rows


def split_header(rows: List[List[str]]) -> Tuple[List[str], List[List[str]]]:
    """Return (header, body) with every cell trimmed."""
    if not rows:
        return [], []
    header = [c.strip() for c in rows[0]]
    body = [[c.strip() for c in r] for r in rows[1:]]
    return header, body
