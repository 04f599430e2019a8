# Index Module
"""
Index store components for tidemark.

Provides abstraction for different index backends:
- In-memory / JSON file (local development, tests)
- Azure AI Search (production)

And the index-backed state store used for watermarks.
"""

from tidemark.index.base import (
    BulkAction,
    BulkRequest,
    IndexOperation,
    IndexStore,
    ScrollHandle,
    ScrollSearchRequest,
    SearchHit,
)
from tidemark.index.memory import InMemoryIndexStore
from tidemark.index.state import STATE_RECORD_TYPE, WATERMARK_PROPERTY, IndexStateStore
from tidemark.index.azure_search import (
    AzureSearchIndexStore,
    AzureSearchStoreConfig,
    create_azure_search_store,
)

__all__ = [
    "BulkAction",
    "BulkRequest",
    "IndexOperation",
    "IndexStore",
    "ScrollHandle",
    "ScrollSearchRequest",
    "SearchHit",
    "InMemoryIndexStore",
    # State
    "IndexStateStore",
    "STATE_RECORD_TYPE",
    "WATERMARK_PROPERTY",
    # Azure AI Search
    "AzureSearchIndexStore",
    "AzureSearchStoreConfig",
    "create_azure_search_store",
]
