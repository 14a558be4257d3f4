# services/extraction/prompts.py
from __future__ import annotations

from typing import Iterable

SYSTEM_PROMPT = (
    "You are a structured data extraction engine for staff rosters.\n"
    "Reconstruct structured information from the roster image with high fidelity.\n"
    "Observe before interpreting. Reconstruct the table structure before populating data.\n"
    "You MUST NOT invent data. Report uncertainty explicitly.\n"
    "Return ONLY a JSON object. No markdown. No commentary.\n"
)

EXTRACTION_PROMPT = """Extract ALL shift entries from this roster image.

PROCESS:
1. Identify the header row with dates and the day columns.
2. Identify role sections if present (Driver, Kitchen Hand, Store Manager, ...).
3. Associate every time cell with its staff name, role and date column.
4. Extract text exactly as seen.

RULES:
- Each shift must become one JSON object.
- Only include rows where a time is present.
- Times must be HH:MM (24-hour).
- If "(B)" appears next to a shift, set "break": true.
- If a cell has multiple times like "8-4, 12-8", create TWO separate shift objects.
- Empty cells must not produce shifts.
- Time off entries (OFF, AL, Leave) must NOT be included as shifts.
- If you are uncertain about a cell, add it to "uncertain_fields" and omit it from "shifts".

OUTPUT SCHEMA:
{
  "week_start": "YYYY-MM-DD (first date in the roster)",
  "venue_name": "string or null",
  "confidence_score": 0-100,
  "shifts": [
    {
      "date": "YYYY-MM-DD",
      "day": "Monday",
      "role": "Driver",
      "staff_name": "Full Name",
      "start_time": "HH:MM",
      "end_time": "HH:MM",
      "break": false,
      "raw_cell": "original cell content"
    }
  ],
  "uncertain_fields": [
    {"field": "staff_name", "value": "J??n", "reason": "Unclear handwriting"}
  ]
}

Return only valid JSON following this schema."""

CORRECTION_RULES = """CORRECTION RULES:
- Fix time formats to HH:MM (24-hour).
- Fix date formats to YYYY-MM-DD.
- Ensure end_time is after start_time.
- Keep every date inside the roster week.
- Remove duplicate entries.
- Fill in missing required fields if the image shows them.
- If a field cannot be determined, remove that shift and list it in uncertain_fields.

Return only valid JSON following the same schema as before."""


def format_errors(errors: Iterable) -> str:
    """One line per error: 1-based shift number, message, field and offending value."""
    lines = []
    for e in errors:
        where = f"Shift #{e.shift_index + 1}" if e.shift_index >= 0 else "Document"
        lines.append(f'- {where}: {e.message} (field: {e.field}, value: "{e.value}")')
    return "\n".join(lines)


def build_correction_prompt(errors: Iterable) -> str:
    return (
        "The previous extraction had these validation errors:\n\n"
        f"{format_errors(errors)}\n\n"
        "Please correct these issues and extract again from the same image.\n\n"
        f"{CORRECTION_RULES}"
    )
