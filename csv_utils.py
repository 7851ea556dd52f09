import csv
import re
from io import StringIO
from typing import Iterable

from services import ExportRow


EXPORT_HEADER = ("Date", "Description", "Amount", "Type", "User", "Category")

FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")
COMMAND_PATTERN = re.compile(r"^(?:(?:cmd|powershell|bash|sh)\b|https?://)", re.IGNORECASE)


def sanitize_csv_value(value: str) -> str:
    """Neutralise spreadsheet formulas and shell-looking cells with a leading tab."""
    value = (value or "").strip()
    if not value:
        return ""
    if value.startswith(FORMULA_PREFIXES) or COMMAND_PATTERN.match(value):
        return "\t" + value
    return value


def format_amount(cents: int) -> str:
    return f"{cents // 100}.{cents % 100:02d}"


def export_rows(rows: Iterable[ExportRow]) -> str:
    """Render summary operations as CSV text, header first."""
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_HEADER)
    writer.writerows(
        (
            row.date.isoformat(),
            sanitize_csv_value(row.description),
            format_amount(row.amount_cents),
            row.type.value,
            sanitize_csv_value(row.user),
            sanitize_csv_value(row.category),
        )
        for row in rows
    )
    return buffer.getvalue()
