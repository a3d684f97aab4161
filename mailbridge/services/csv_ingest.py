"""
CSV recipient ingestion.

Turns an uploaded CSV into a list of recipients for bulk sending:
1. Header row is matched against known column aliases
2. Each data row is validated; bad rows are reported, not fatal
3. Output is capped at MAX_RECIPIENTS
"""

import csv
import io
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

MAX_CSV_BYTES = 5 * 1024 * 1024
MAX_RECIPIENTS = 100

EMAIL_COLUMNS = {"email", "email_address", "to"}
NAME_COLUMNS = {"name", "full_name", "recipient_name"}

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


class CSVInputError(ValueError):
    """The upload cannot be parsed at all (wrong type, too big, bad header)."""


@dataclass
class Recipient:
    email: str
    name: str = ""

    def to_dict(self) -> dict:
        return {"email": self.email, "name": self.name}


@dataclass
class CSVParseResult:
    total_records: int = 0
    valid_emails: List[Recipient] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_records": self.total_records,
            "valid_emails": [r.to_dict() for r in self.valid_emails],
            "errors": self.errors,
        }


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value or ""))


def validate_upload(filename: Optional[str], size: int) -> None:
    """
    Reject uploads before reading them.

    Raises:
        CSVInputError: not a .csv file, or larger than MAX_CSV_BYTES
    """
    if not filename or not filename.lower().endswith(".csv"):
        raise CSVInputError("File must be a CSV file")
    if size > MAX_CSV_BYTES:
        raise CSVInputError("File size must be less than 5MB")


def _find_columns(header: List[str]):
    email_col = name_col = None
    for index, column in enumerate(header):
        key = column.strip().lower()
        if key in EMAIL_COLUMNS:
            email_col = index
        elif key in NAME_COLUMNS:
            name_col = index
    return email_col, name_col


def _cell(row: List[str], index: Optional[int]) -> str:
    if index is None or index >= len(row):
        return ""
    return row[index].strip()


def parse_recipients(content: Union[bytes, str]) -> CSVParseResult:
    """
    Parse CSV content into recipients.

    Rows may have any number of fields. Rows with a missing or malformed
    email are skipped and reported in `errors` with their 1-based data row
    number; fully blank rows are ignored and not counted.

    Raises:
        CSVInputError: undecodable content, no header, or no email column
    """
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise CSVInputError("CSV file must be UTF-8 encoded")

    reader = csv.reader(io.StringIO(content, newline=""))

    try:
        header = next(reader)
    except (StopIteration, csv.Error):
        raise CSVInputError("Failed to read CSV headers")

    email_col, name_col = _find_columns(header)
    if email_col is None:
        raise CSVInputError("CSV must contain an 'email' column")

    result = CSVParseResult()

    while True:
        try:
            row = next(reader)
        except StopIteration:
            break
        except csv.Error as e:
            result.total_records += 1
            result.errors.append(f"Error reading row {result.total_records}: {e}")
            continue

        # Skip empty rows
        if not any(cell.strip() for cell in row):
            continue

        result.total_records += 1
        row_number = result.total_records

        email = _cell(row, email_col)
        if not email:
            result.errors.append(f"Row {row_number}: Missing email address")
            continue

        if not is_valid_email(email):
            result.errors.append(f"Row {row_number}: Invalid email format: {email}")
            continue

        result.valid_emails.append(Recipient(email=email, name=_cell(row, name_col)))

    # Limit number of emails to prevent abuse
    if len(result.valid_emails) > MAX_RECIPIENTS:
        result.valid_emails = result.valid_emails[:MAX_RECIPIENTS]
        result.errors.append(f"Limited to first {MAX_RECIPIENTS} emails")

    return result
