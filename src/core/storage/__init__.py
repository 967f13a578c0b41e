"""Content-addressable blob storage for attachment bodies."""

from .blob_store import BlobStore, FileBlobStore, content_key

__all__ = ["BlobStore", "FileBlobStore", "content_key"]
