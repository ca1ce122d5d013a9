import gzip
from pathlib import Path
from typing import Any, Dict, List, NamedTuple

from lxml import etree

try:
    import pandas as pd  # Optional, only used for xlsx/csv exports
except Exception:
    pd = None

# Processing order of the import
CATEGORIES = ("Reading", "Completed", "OnHold", "Dropped", "PlanToRead")

# MAL writes either the label or the numeric code into <my_status>
MAL_STATUS_TO_CATEGORY: Dict[str, str] = {
    "Reading": "Reading",
    "1": "Reading",
    "Completed": "Completed",
    "2": "Completed",
    "On-Hold": "OnHold",
    "3": "OnHold",
    "Dropped": "Dropped",
    "4": "Dropped",
    "Plan to Read": "PlanToRead",
    "6": "PlanToRead",
}

CATEGORY_LABELS: Dict[str, str] = {
    "Reading": "Reading",
    "Completed": "Completed",
    "OnHold": "On-Hold",
    "Dropped": "Dropped",
    "PlanToRead": "Plan to Read",
}


class ExportError(RuntimeError):
    """Export file missing, unreadable or not a MAL manga list."""


class LocalEntry(NamedTuple):
    title: str
    chapters: int
    category: str


def category_for_status(status: Any) -> str:
    return MAL_STATUS_TO_CATEGORY.get(str(status or "").strip(), "PlanToRead")


def _to_int(value: Any) -> int:
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return 0


def _text(node: Any, tag: str) -> str:
    child = node.find(tag)
    if child is None or child.text is None:
        return ""
    return child.text


def parse_mal_xml(data: bytes) -> List[LocalEntry]:
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(data, parser=parser)
    except etree.XMLSyntaxError as e:
        raise ExportError(f"Invalid export XML: {e}") from e
    if root.tag != "myanimelist":
        raise ExportError(f"Unexpected root element <{root.tag}>, expected <myanimelist>")
    entries: List[LocalEntry] = []
    for manga in root.iter("manga"):
        entries.append(LocalEntry(
            title=_text(manga, "manga_title").strip(),
            chapters=_to_int(_text(manga, "my_read_chapters")),
            category=category_for_status(_text(manga, "my_status")),
        ))
    return entries


def read_spreadsheet(path: Path) -> List[LocalEntry]:
    if pd is None:
        raise ExportError("pandas/openpyxl are required for spreadsheet exports. Install with: python -m pip install pandas openpyxl")
    try:
        if path.suffix.lower() == ".csv":
            df = pd.read_csv(path, dtype=str)
        else:
            df = pd.read_excel(path, dtype=str)
    except Exception as e:
        raise ExportError(f"Failed to read {path}: {e}") from e
    missing = [c for c in ("manga_title", "my_status") if c not in df.columns]
    if missing:
        raise ExportError(f"{path.name} is missing columns: {', '.join(missing)}")
    entries: List[LocalEntry] = []
    for _, row in df.iterrows():
        title = row["manga_title"] if pd.notna(row["manga_title"]) else ""
        chapters = row.get("my_read_chapters")
        entries.append(LocalEntry(
            title=str(title).strip(),
            chapters=_to_int(chapters) if pd.notna(chapters) else 0,
            category=category_for_status(row["my_status"] if pd.notna(row["my_status"]) else ""),
        ))
    return entries


def read_mal_export(path: Path) -> List[LocalEntry]:
    """Read a MAL manga export (.xml, .xml.gz, .csv or .xlsx)."""
    path = Path(path)
    if not path.is_file():
        raise ExportError(f"Export file not found: {path}")
    suffix = path.suffix.lower()
    if suffix in {".csv", ".xlsx", ".xls"}:
        return read_spreadsheet(path)
    try:
        if suffix == ".gz":
            with gzip.open(path, "rb") as fh:
                data = fh.read()
        else:
            data = path.read_bytes()
    except OSError as e:
        raise ExportError(f"Failed to read {path}: {e}") from e
    return parse_mal_xml(data)


def categorize(entries: List[LocalEntry]) -> Dict[str, List[LocalEntry]]:
    """Group entries by category, keeping file order inside each group."""
    groups: Dict[str, List[LocalEntry]] = {c: [] for c in CATEGORIES}
    for entry in entries:
        groups.setdefault(entry.category, []).append(entry)
    return groups
