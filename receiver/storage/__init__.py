"""Storage layer: relational system of record plus blob archive."""

from receiver.storage.blob import BlobStore, FilesystemBlobStore, SupabaseBlobStore, create_blob_store
from receiver.storage.database import Database, get_database
from receiver.storage.persister import DualStorePersister
from receiver.storage.repository import DataEntryRepository

__all__ = [
    "BlobStore",
    "DataEntryRepository",
    "Database",
    "DualStorePersister",
    "FilesystemBlobStore",
    "SupabaseBlobStore",
    "create_blob_store",
    "get_database",
]
