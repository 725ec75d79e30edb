"""Matchstore: relational store for fragment matches with dynamic attribute fields."""

__version__ = "0.1.0"

from matchstore.catalog import FieldKind, FieldSpec, SchemaCatalog
from matchstore.config import StoreConfig
from matchstore.descriptor import ConnectionDescriptor, parse_descriptor
from matchstore.errors import (
    CapabilityMissing,
    FieldExistsError,
    FieldNotFoundError,
    InvalidDescriptorError,
    InvalidFieldError,
    MatchStoreError,
    NotOpenError,
    QueryFailedError,
)
from matchstore.filters import MatchFilter
from matchstore.history import HistoryTracker
from matchstore.query import QueryBuilder
from matchstore.registry import ConnectionRegistry, create_store, default_registry, get_store
from matchstore.store import Capabilities, MatchStore
from matchstore.store_duckdb import DuckDBMatchStore
from matchstore.store_null import NullMatchStore
from matchstore.store_sqlite import SqliteMatchStore
from matchstore.types import IDENTITY_TRANSFORMATION, HistoryRecord, MatchRecord, SortOrder
from matchstore.xml_io import export_document, import_document, load_xml, save_xml

__all__ = [
    "__version__",
    "MatchStore",
    "SqliteMatchStore",
    "DuckDBMatchStore",
    "NullMatchStore",
    "Capabilities",
    "ConnectionRegistry",
    "ConnectionDescriptor",
    "parse_descriptor",
    "create_store",
    "default_registry",
    "get_store",
    "StoreConfig",
    "SchemaCatalog",
    "FieldKind",
    "FieldSpec",
    "MatchFilter",
    "QueryBuilder",
    "HistoryTracker",
    "MatchRecord",
    "HistoryRecord",
    "SortOrder",
    "IDENTITY_TRANSFORMATION",
    "export_document",
    "import_document",
    "load_xml",
    "save_xml",
    "MatchStoreError",
    "NotOpenError",
    "FieldExistsError",
    "FieldNotFoundError",
    "InvalidFieldError",
    "InvalidDescriptorError",
    "QueryFailedError",
    "CapabilityMissing",
]
