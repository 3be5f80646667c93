"""
Candidate CSV parsing and import reconciliation.

The CSV format is flat, one candidate per line:

    name,class,position_key

Reconciliation is computed here as a pure plan so the database layer only has
to apply it inside a single transaction.
"""
import csv
import io
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Mapping

logger = logging.getLogger(__name__)

HEADER = ("name", "class", "position_key")
BOM = "\ufeff"


class CsvFormatError(ValueError):
    """Raised when the CSV text cannot be read."""
    pass


class ImportMode(str, Enum):
    """CSV reconciliation modes."""
    MERGE = "merge"
    REPLACE = "replace"


@dataclass(frozen=True)
class CandidateRow:
    """One (name, class, position_key) triple from the CSV."""
    name: str
    class_name: str
    position_key: str

    @classmethod
    def from_record(cls, record: Mapping) -> "CandidateRow":
        """Build a row from a stored candidate record."""
        return cls(
            name=record["name"],
            class_name=record["class"],
            position_key=record["position_key"],
        )


@dataclass
class ImportPlan:
    """Rows to insert and candidate ids to delete."""
    mode: ImportMode
    to_insert: List[CandidateRow] = field(default_factory=list)
    to_delete: List[int] = field(default_factory=list)


@dataclass
class ImportResult:
    """Summary of an applied import."""
    mode: ImportMode
    inserted: int
    deleted: int
    total_csv_rows: int

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "inserted": self.inserted,
            "deleted": self.deleted,
            "totalCsvRows": self.total_csv_rows,
        }


def parse_candidates_csv(text: str) -> List[CandidateRow]:
    """
    Parse candidate CSV text into unique rows.

    Blank lines and rows missing any of the three fields are dropped, extra
    trailing fields are ignored and a leading header row is skipped. Duplicate
    triples collapse to their first occurrence.

    Args:
        text: Raw CSV content

    Returns:
        List of CandidateRow in file order

    Raises:
        CsvFormatError: the text is not readable as CSV
    """
    if text.startswith(BOM):
        text = text[len(BOM):]

    rows: List[CandidateRow] = []
    seen = set()
    skipped = 0

    first = True
    reader = csv.reader(io.StringIO(text), skipinitialspace=True)
    try:
        records = list(reader)
    except csv.Error as e:
        raise CsvFormatError(f"Invalid CSV at line {reader.line_num}: {e}")

    for fields in records:
        values = [value.strip() for value in fields[:3]]
        values += [""] * (3 - len(values))
        if not any(values):
            continue

        if first:
            first = False
            if tuple(value.lower() for value in values) == HEADER:
                continue

        name, class_name, position_key = values
        if not (name and class_name and position_key):
            skipped += 1
            continue

        row = CandidateRow(name=name, class_name=class_name, position_key=position_key)
        if row in seen:
            continue
        seen.add(row)
        rows.append(row)

    if skipped:
        logger.warning(f"Skipped {skipped} incomplete CSV row(s)")

    return rows


def plan_import(
    existing: Iterable[Mapping],
    rows: List[CandidateRow],
    mode: ImportMode
) -> ImportPlan:
    """
    Reconcile CSV rows against stored candidates.

    Merge inserts every CSV triple that is not stored yet and never removes
    anything. Replace does the same and also deletes every stored candidate
    whose exact triple is absent from the CSV.

    Args:
        existing: Stored candidate records with id, name, class, position_key
        rows: Parsed CSV rows
        mode: ImportMode.MERGE or ImportMode.REPLACE

    Returns:
        ImportPlan describing the required writes
    """
    mode = ImportMode(mode)
    stored = {CandidateRow.from_record(record): record["id"] for record in existing}
    wanted = set(rows)

    plan = ImportPlan(mode=mode)
    plan.to_insert = [row for row in rows if row not in stored]

    if mode is ImportMode.REPLACE:
        plan.to_delete = sorted(
            candidate_id for row, candidate_id in stored.items() if row not in wanted
        )

    return plan
