"""Bulk partner import from the outreach spreadsheet.

The sheet is the one the sales team keeps by hand: one row per monument
company with free-text notes and the dates it was emailed, called or
visited. Rows are turned into partner records and upserted by name.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import re
from collections import Counter
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

import openpyxl

from mission_control.config import get_settings
from mission_control.health import health_score
from mission_control.schemas import ImportResult
from mission_control.store import StoreClient, open_store

log = logging.getLogger(__name__)

PARTNERS_TABLE = "crm_partners"
LEAD_SOURCE = "spreadsheet_import"


def _s(value: object) -> str:
    """Safely coerce cell value to stripped string."""
    if value is None:
        return ""
    return str(value).strip()


def _col(row: tuple, idx: int | None) -> object:
    """Safely get a column value from a row tuple."""
    if idx is None:
        return None
    return row[idx] if idx < len(row) else None


# ---------------------------------------------------------------------------
# Column mapping
# ---------------------------------------------------------------------------

# field -> accepted header spellings (casefolded)
_HEADERS = {
    "company": ("company", "name"),
    "email": ("email",),
    "website": ("website",),
    "phone": ("phone",),
    "address": ("address",),
    "date_emailed": ("date emailed",),
    "date_called": ("date called",),
    "visited_date": ("visited date", "visted date"),
    "notes": ("notes",),
    "call_notes": ("call notes",),
}

# placeholders typed where the email was not known
_NO_EMAIL = {"on website", "website"}

_DATE_RE = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{2,4})\b")
_STATE_ZIP_RE = re.compile(r"\b([A-Z]{2})\s+\d{5}(?:-\d{4})?\b")

TERRITORIES = {
    "Wasatch Front North": ("Logan", "Brigham City", "Ogden", "Wellsville", "Smithfield"),
    "Salt Lake County": (
        "Salt Lake City", "Murray", "Sandy", "West Jordan", "South Jordan", "Taylorsville",
        "West Valley City",
    ),
    "Utah County": (
        "Provo", "Orem", "Springville", "Spanish Fork", "Payson", "American Fork", "Lehi",
        "Pleasant Grove", "Lindon", "Mapleton",
    ),
    "Wasatch Front South": ("Draper", "Riverton", "Herriman", "Bluffdale", "Alpine", "Highland"),
    "Davis/Weber County": ("Layton", "Bountiful", "Farmington", "Kaysville", "Clearfield"),
    "Central Utah": ("Richfield", "Price", "Nephi", "Delta", "Manti", "Ephraim", "Aurora"),
    "Southern Utah": ("St. George", "Cedar City", "Hurricane", "Washington", "Ivins", "Santa Clara"),
    "Eastern Utah": ("Vernal", "Roosevelt", "Duchesne"),
    "Wasatch Back": ("Park City", "Heber City", "Midway", "Kamas"),
    "Southwest Utah": ("Beaver", "Parowan", "Panguitch", "Kanab"),
    "Southeast Utah": ("Moab", "Monticello", "Blanding"),
}
FALLBACK_TERRITORY = "Other Utah"


def header_index(header: tuple) -> dict[str, int]:
    """Map known fields to column positions from the sheet's header row."""
    positions = {_s(cell).casefold(): i for i, cell in enumerate(header) if _s(cell)}
    out: dict[str, int] = {}
    for field, spellings in _HEADERS.items():
        for spelling in spellings:
            if spelling in positions:
                out[field] = positions[spelling]
                break
    return out


# ---------------------------------------------------------------------------
# Derivations
# ---------------------------------------------------------------------------


def derive_stage(notes: str, call_notes: str, contacted: bool) -> str:
    """Best guess at a pipeline stage from what the notes say."""
    text = f"{notes} {call_notes}".casefold()
    if "samples" in text or "in the talks" in text:
        return "negotiating"
    if "not interested" in text or "werent interested" in text or "weren't interested" in text:
        return "lost"
    if "responded" in text or "talking" in text:
        return "warm"
    if contacted:
        return "warm"
    return "prospect"


def contact_dates(*cells: object) -> list[date]:
    """Every date found in the given cells (real dates or m/d/yy text)."""
    found: list[date] = []
    for cell in cells:
        if isinstance(cell, datetime):
            found.append(cell.date())
        elif isinstance(cell, date):
            found.append(cell)
        else:
            for month, day, year in _DATE_RE.findall(_s(cell)):
                year_num = int(year) + 2000 if len(year) == 2 else int(year)
                try:
                    found.append(date(year_num, int(month), int(day)))
                except ValueError:
                    log.debug("Ignoring invalid date %s/%s/%s", month, day, year)
    return found


def split_address(address: str) -> tuple[str | None, str | None]:
    """(city, state) from a "street, city, ST 12345" address."""
    if not address:
        return None, None
    match = _STATE_ZIP_RE.search(address)
    state = match.group(1) if match else None
    parts = [p.strip() for p in address.split(",")]
    city = None
    if len(parts) >= 3:
        city = parts[-2]
    elif len(parts) == 2:
        city = _STATE_ZIP_RE.sub("", parts[1]).strip() or None
    if city is None or any(ch.isdigit() for ch in city):
        lower = address.casefold()
        city = next(
            (c for cities in TERRITORIES.values() for c in cities if c.casefold() in lower), None,
        )
    return city, state


def territory_for(address: str) -> str | None:
    if not address:
        return None
    lower = address.casefold()
    for territory, cities in TERRITORIES.items():
        if any(c.casefold() in lower for c in cities):
            return territory
    return FALLBACK_TERRITORY


def _email(raw: str) -> str | None:
    email = raw.removeprefix("mailto:").strip()
    if not email or email.casefold() in _NO_EMAIL or "@" not in email:
        return None
    return email


def partner_from_row(row: tuple, columns: dict[str, int]) -> dict[str, Any] | None:
    """One sheet row as a partner record; ``None`` for rows without a company."""
    name = _s(_col(row, columns.get("company")))
    if not name:
        return None
    address = _s(_col(row, columns.get("address")))
    notes = _s(_col(row, columns.get("notes")))
    call_notes = _s(_col(row, columns.get("call_notes")))
    dates = contact_dates(
        _col(row, columns.get("date_emailed")),
        _col(row, columns.get("date_called")),
        _col(row, columns.get("visited_date")),
    )
    last_contact = (
        datetime.combine(max(dates), datetime.min.time(), tzinfo=UTC).isoformat() if dates else None
    )
    city, state = split_address(address)

    combined = []
    if notes:
        combined.append(f"Notes: {notes}")
    if call_notes:
        combined.append(f"Call notes: {call_notes}")

    return {
        "name": name,
        "email": _email(_s(_col(row, columns.get("email")))),
        "website": _s(_col(row, columns.get("website"))) or None,
        "phone": _s(_col(row, columns.get("phone"))) or None,
        "address": address or None,
        "city": city,
        "state": state,
        "territory": territory_for(address),
        "partner_type": "monument_company",
        "pipeline_status": derive_stage(notes, call_notes, bool(dates)),
        "lead_source": LEAD_SOURCE,
        "last_contact_at": last_contact,
        "health_score": health_score(last_contact),
        "notes": "\n\n".join(combined) or None,
    }


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


def read_partner_rows(file_path: str | Path) -> tuple[list[dict[str, Any]], int]:
    """Parse the first sheet. Returns (partners, data rows read)."""
    wb = openpyxl.load_workbook(Path(file_path), read_only=True, data_only=True)
    try:
        rows = list(wb.worksheets[0].iter_rows(values_only=True))
    finally:
        wb.close()
    if not rows:
        return [], 0
    columns = header_index(rows[0])
    if "company" not in columns:
        raise ValueError("Sheet has no Company column")
    partners = [p for p in (partner_from_row(r, columns) for r in rows[1:] if r) if p]
    return partners, len(rows) - 1


def dedupe_by_name(partners: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Keep the first row per company name (case-insensitive)."""
    seen: set[str] = set()
    out = []
    for p in partners:
        key = p["name"].casefold()
        if key in seen:
            log.warning("Duplicate company %r in sheet, keeping the first row", p["name"])
            continue
        seen.add(key)
        out.append(p)
    return out


async def import_partners(file_path: str | Path, store: StoreClient) -> ImportResult:
    """Upsert every partner in the spreadsheet, merging on name."""
    partners, rows_read = read_partner_rows(file_path)
    unique = dedupe_by_name(partners)
    saved = await store.upsert(PARTNERS_TABLE, unique, on_conflict="name") if unique else []
    return ImportResult(
        rows_read=rows_read,
        upserted=len(saved),
        skipped=rows_read - len(unique),
        by_stage=dict(Counter(p["pipeline_status"] for p in unique)),
    )


async def _run(file_path: Path) -> ImportResult:
    async with open_store() as store:
        return await import_partners(file_path, store)


def main():
    parser = argparse.ArgumentParser(description="Import monument-company partners from an .xlsx sheet.")
    parser.add_argument("file", type=Path)
    parser.add_argument("--dry-run", action="store_true", help="Print derived records instead of saving")
    args = parser.parse_args()
    logging.basicConfig(level=get_settings().log_level.upper(), format="%(levelname)s %(name)s: %(message)s")

    if args.file.suffix.lower() != ".xlsx":
        parser.error("Only .xlsx files are supported")
    if args.dry_run:
        partners, _ = read_partner_rows(args.file)
        for p in dedupe_by_name(partners):
            print(f"{p['name']}: {p['pipeline_status']} ({p['territory'] or 'no territory'})")
        return
    result = asyncio.run(_run(args.file))
    print(result.model_dump_json(indent=2))


if __name__ == "__main__":
    main()
