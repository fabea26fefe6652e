# backend/bharatcrm/services/csv_import_service.py
"""
CSV lead import: parse, preview against existing leads, confirm.

Columns are matched by substring on the lower-cased header:
    name (but not "company name"), company/organization, email, phone/mobile, source
Only a name column is required; rows without a name are skipped.
"""

import csv
import io
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bharatcrm.database import safe_commit
from bharatcrm.models.lead import Lead
from bharatcrm.services.assignment_service import assign_lead
from bharatcrm.services.duplicate_service import DuplicateMatch, check_duplicate
from bharatcrm.utils.logger import logger


class ParsedLead(BaseModel):
    name: str
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    source: Optional[str] = None


class DuplicateRow(BaseModel):
    row: int
    lead: ParsedLead
    existing: DuplicateMatch


class ImportPreview(BaseModel):
    total_rows: int
    new_leads: List[ParsedLead] = Field(default_factory=list)
    duplicates: List[DuplicateRow] = Field(default_factory=list)


class DuplicateDecision(BaseModel):
    lead: ParsedLead
    include: bool = False


class ImportConfirmRequest(BaseModel):
    new_leads: List[ParsedLead] = Field(default_factory=list)
    duplicates: List[DuplicateDecision] = Field(default_factory=list)


class ImportResult(BaseModel):
    success: int = 0
    failed: int = 0
    skipped: int = 0


def _find_column(headers: List[str], *needles: str, exclude: Optional[str] = None) -> int:
    for index, header in enumerate(headers):
        if exclude and exclude in header:
            continue
        if any(needle in header for needle in needles):
            return index
    return -1


def parse_csv(text: str) -> Tuple[List[ParsedLead], Optional[str]]:
    """
    Parse CSV text into leads.

    Returns:
        Tuple of (leads, error_message); error_message is set when the file
        has no usable header.
    """
    rows = [row for row in csv.reader(io.StringIO(text or "")) if any(cell.strip() for cell in row)]
    if len(rows) < 2:
        return [], "CSV must have a header row and at least one lead"

    headers = [h.strip().strip('"').lower() for h in rows[0]]
    name_idx = _find_column(headers, "name", exclude="company")
    company_idx = _find_column(headers, "company", "organization")
    email_idx = _find_column(headers, "email")
    phone_idx = _find_column(headers, "phone", "mobile")
    source_idx = _find_column(headers, "source")

    if name_idx == -1:
        return [], 'CSV must have a "name" column'

    def cell(values: List[str], idx: int) -> Optional[str]:
        if idx < 0 or idx >= len(values):
            return None
        return values[idx].strip().strip('"') or None

    leads: List[ParsedLead] = []
    for values in rows[1:]:
        name = cell(values, name_idx)
        if not name:
            continue
        leads.append(
            ParsedLead(
                name=name,
                company=cell(values, company_idx),
                email=cell(values, email_idx),
                phone=cell(values, phone_idx),
                source=cell(values, source_idx),
            )
        )

    return leads, None


def build_preview(db: Session, org_id: int, leads: List[ParsedLead]) -> ImportPreview:
    """Split parsed rows into new leads and phone duplicates of existing org leads."""
    preview = ImportPreview(total_rows=len(leads))

    for row_number, lead in enumerate(leads, start=1):
        existing = check_duplicate(db, lead.phone, org_id) if lead.phone else None
        if existing:
            preview.duplicates.append(DuplicateRow(row=row_number, lead=lead, existing=existing))
        else:
            preview.new_leads.append(lead)

    logger.info(
        f"[Import] Preview for org {org_id}: {preview.total_rows} rows, "
        f"{len(preview.duplicates)} duplicates"
    )
    return preview


def confirm_import(db: Session, org_id: int, user_id: int, request: ImportConfirmRequest) -> ImportResult:
    """Insert new leads plus the duplicates the user chose to keep."""
    result = ImportResult()

    to_insert = list(request.new_leads)
    for decision in request.duplicates:
        if decision.include:
            to_insert.append(decision.lead)
        else:
            result.skipped += 1

    for parsed in to_insert:
        lead = Lead(
            org_id=org_id,
            name=parsed.name,
            email=parsed.email,
            phone=parsed.phone,
            source=parsed.source or "import",
            status="new",
            custom_fields={"company": parsed.company} if parsed.company else {},
        )
        assignment = assign_lead(db, lead, org_id, created_by_user_id=user_id)
        lead.assigned_to = assignment.assigned_to
        lead.created_by = assignment.created_by or user_id

        db.add(lead)
        ok, _ = safe_commit(db, f"import lead {parsed.name}")
        if ok:
            result.success += 1
        else:
            result.failed += 1

    logger.info(
        f"[Import] Org {org_id}: {result.success} imported, {result.failed} failed, {result.skipped} skipped"
    )
    return result
