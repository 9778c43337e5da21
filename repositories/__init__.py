"""Repository modules for the quote workflow persistence layer."""

__all__ = [
    "supplier_repo",
    "quote_repo",
    "purchase_memory_repo",
]
