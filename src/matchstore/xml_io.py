"""XML interchange: export a store to a ``matches`` document and import one back.

Document shape::

    <?xml version="1.0" encoding="UTF-8"?>
    <!DOCTYPE matches-cache>
    <matches version="1.0">
      <match id="1" src="WDC_0001" tgt="WDC_0002" xf="1.0e+00 ..." error="0.1" .../>
    </matches>

Every field of the store becomes an attribute of ``<match>``. On import, the
built-in fields are created first, attributes outside the built-in set are
restored into matching (or newly created) fields.
"""

from __future__ import annotations

import logging
import math
import os
import xml.etree.ElementTree as ET
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from matchstore.catalog import CORE_TABLE
from matchstore.errors import MatchStoreError, NotOpenError
from matchstore.filters import is_identifier
from matchstore.types import (
    IDENTITY_TRANSFORMATION,
    SortOrder,
    format_transformation,
    parse_transformation,
)

if TYPE_CHECKING:
    from matchstore.store import MatchStore

log = logging.getLogger(__name__)

MATCHES_ROOTTAG = "matches"
MATCHES_DOCTYPE = "matches-cache"
MATCHES_VERSION = "1.0"
OLD_MATCHES_VERSION = "0.0"

CORE_ATTRIBUTES = ("id", "src", "tgt", "xf")

# (field, SQL type, value used when the attribute is absent)
BUILTIN_FIELDS: tuple[tuple[str, str, str | None], ...] = (
    ("status", "INTEGER", "0"),
    ("error", "REAL", "NaN"),
    ("overlap", "REAL", "0.0"),
    ("volume", "REAL", "0.0"),
    ("old_volume", "REAL", "0.0"),
    ("probability", "REAL", None),
)

NUM_DUPLICATES_QUERY = (
    "SELECT duplicate AS match_id, COUNT(duplicate) AS num_duplicates "
    "FROM duplicate GROUP BY duplicate"
)

_BUILTIN_NAMES = frozenset(name for name, _, _ in BUILTIN_FIELDS)


# --- Value conversion ---


def format_value(value: Any, sql_type: str | None) -> str:
    """Attribute text for a stored value; missing REAL values become NaN."""
    if value is None:
        return "NaN" if sql_type == "REAL" else ""
    if isinstance(value, float):
        return "NaN" if math.isnan(value) else repr(value)
    return str(value)


def _to_float(text: str, field_name: str) -> float:
    try:
        return float(text)
    except ValueError:
        log.warning("invalid %s value %r, using 0", field_name, text)
        return 0.0


def _to_int(text: str, field_name: str) -> int:
    try:
        return int(text)
    except ValueError:
        log.warning("invalid %s value %r, using 0", field_name, text)
        return 0


def convert_value(text: str, sql_type: str | None, field_name: str = "") -> Any:
    if sql_type == "INTEGER":
        return None if text == "" else _to_int(text, field_name)
    if sql_type == "REAL":
        return None if text == "" else _to_float(text, field_name)
    return text


def infer_sql_type(values: Iterable[str]) -> str:
    """Narrowest of INTEGER, REAL, TEXT that parses every non-empty value."""
    candidates = ["INTEGER", "REAL"]
    seen = False
    for text in values:
        if text == "":
            continue
        seen = True
        if "INTEGER" in candidates:
            try:
                int(text)
            except ValueError:
                candidates.remove("INTEGER")
        if "REAL" in candidates:
            try:
                float(text)
            except ValueError:
                candidates.remove("REAL")
        if not candidates:
            break
    return candidates[0] if candidates and seen else "TEXT"


# --- Export ---


def export_document(store: MatchStore) -> ET.Element:
    """Build the ``<matches>`` element for every match in ``store``."""
    root = ET.Element(MATCHES_ROOTTAG, {"version": MATCHES_VERSION})
    if not store.is_open():
        store._report("export", NotOpenError("export matches"))
        return root

    specs = store.catalog.specs()
    names = [spec.name for spec in specs]
    records = store.fetch_preloaded(names, "match_id", SortOrder.ASC)
    total = len(records)
    interval = max(1, int(store.config.progress_interval))

    store.operation_started.emit("Exporting matches to XML", total)
    try:
        for done, record in enumerate(records, 1):
            attrs = {
                "id": str(record.match_id),
                "src": record.source_name,
                "tgt": record.target_name,
                "xf": format_transformation(record.transformation),
            }
            for spec in specs:
                attrs[spec.name] = format_value(record.cache.get(spec.name), spec.sql_type)
            ET.SubElement(root, "match", attrs)
            if done % interval == 0:
                store.step_done.emit(done)
    finally:
        store.operation_ended.emit()
    log.info("exported %d matches", total)
    return root


def save_xml(store: MatchStore, path: str | os.PathLike[str]) -> bool:
    root = export_document(store)
    if not store.is_open():
        return False
    ET.indent(root)
    body = ET.tostring(root, encoding="unicode")
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write('<?xml version="1.0" encoding="UTF-8"?>\n')
            f.write(f"<!DOCTYPE {MATCHES_DOCTYPE}>\n")
            f.write(body)
            f.write("\n")
    except OSError as e:
        log.error("could not write %s: %s", path, e)
        return False
    return True


# --- Import ---


def _insert_match(store: MatchStore, element: ET.Element, extras: dict[str, dict[int, str]]) -> bool:
    raw_id = element.get("id")
    try:
        match_id = int(raw_id)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        log.error("match element without a valid id (%r) skipped", raw_id)
        return False

    raw_xf = element.get("xf", "")
    try:
        xf = parse_transformation(raw_xf)
    except ValueError:
        log.warning("match %d has a malformed transformation, using identity", match_id)
        xf = IDENTITY_TRANSFORMATION

    if (
        store._try_execute(
            f"INSERT INTO {CORE_TABLE} (match_id, source_name, target_name, transformation) "
            "VALUES (?, ?, ?, ?)",
            (match_id, element.get("src", ""), element.get("tgt", ""), format_transformation(xf)),
        )
        is None
    ):
        return False

    ok = True
    for name, sql_type, default in BUILTIN_FIELDS:
        if name == "probability":
            # Written as "Probability" by older tools.
            text = element.get("Probability", element.get("probability"))
        else:
            text = element.get(name, default)
        if text is None:
            continue
        value = convert_value(text, sql_type, name)
        if (
            store._try_execute(
                f'INSERT INTO "{name}" (match_id, "{name}", confidence) VALUES (?, ?, 1.0)',
                (match_id, value),
            )
            is None
        ):
            ok = False

    for attr, text in element.attrib.items():
        key = attr.lower()
        if attr in CORE_ATTRIBUTES or key in _BUILTIN_NAMES:
            continue
        extras.setdefault(key, {})[match_id] = text
    return ok


def _restore_extra_attributes(store: MatchStore, extras: dict[str, dict[int, str]]) -> bool:
    catalog = store.catalog
    ok = True
    for name, values in sorted(extras.items()):
        if not is_identifier(name):
            log.warning("attribute %s is not a valid field name, skipped", name)
            continue
        spec = catalog.field(name)
        if spec is None:
            sql_type = infer_sql_type(values.values())
            if not catalog.add_field(name, sql_type):
                ok = False
                continue
            spec = catalog.field(name)
        if spec is None or spec.is_meta:
            log.debug("attribute %s maps to a derived field, skipped", name)
            continue
        try:
            with store.transaction():
                for match_id, text in values.items():
                    value = convert_value(text, spec.sql_type, name)
                    store.upsert_value(spec.name, match_id, value, 1.0)
        except MatchStoreError as e:
            store._report(f"restore attribute {name}", e)
            ok = False
    return ok


def import_document(store: MatchStore, root: ET.Element) -> bool:
    """Insert every ``<match>`` of ``root`` into ``store``.

    Creates the built-in fields if missing, then the ``comment`` and
    ``duplicate`` fields and the ``num_duplicates`` meta field.
    """
    if not store.is_open():
        store._report("import", NotOpenError("import matches"))
        return False
    if root.tag != MATCHES_ROOTTAG:
        log.error("not a matches document: root element is <%s>", root.tag)
        return False
    version = root.get("version", OLD_MATCHES_VERSION)
    if version not in (MATCHES_VERSION, OLD_MATCHES_VERSION):
        log.warning("unknown matches document version %s, trying anyway", version)

    catalog = store.catalog
    for name, sql_type, _ in BUILTIN_FIELDS:
        if not catalog.is_normal(name):
            catalog.add_field(name, sql_type, 0)

    elements = root.findall("match")
    extras: dict[str, dict[int, str]] = {}
    interval = max(1, int(store.config.progress_interval))
    ok = True

    store.operation_started.emit("Converting XML file to database", len(elements))
    try:
        with store.transaction(lock=True):
            for done, element in enumerate(elements, 1):
                if not _insert_match(store, element, extras):
                    ok = False
                if done % interval == 0:
                    store.step_done.emit(done)
    except MatchStoreError as e:
        store._report("import", e)
        ok = False
    finally:
        store.operation_ended.emit()
    store.match_count_changed.emit()

    if not catalog.has_field("comment"):
        catalog.add_field("comment", "TEXT", "")
    if not catalog.has_field("duplicate"):
        catalog.add_field("duplicate", "INTEGER", 0)
    if not catalog.has_field("num_duplicates"):
        catalog.add_meta_field("num_duplicates", NUM_DUPLICATES_QUERY)

    if extras and not _restore_extra_attributes(store, extras):
        ok = False
    log.info("imported %d match elements", len(elements))
    return ok


def load_xml(store: MatchStore, path: str | os.PathLike[str]) -> bool:
    try:
        root = ET.parse(path).getroot()
    except (OSError, ET.ParseError) as e:
        log.error("could not read %s: %s", path, e)
        return False
    return import_document(store, root)


__all__ = [
    "BUILTIN_FIELDS",
    "MATCHES_ROOTTAG",
    "MATCHES_VERSION",
    "NUM_DUPLICATES_QUERY",
    "export_document",
    "import_document",
    "infer_sql_type",
    "load_xml",
    "save_xml",
]
