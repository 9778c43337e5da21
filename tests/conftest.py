import os
import sys

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from models.quote import Supplier
from repositories.purchase_memory_repo import PurchaseMemory
from repositories.quote_repo import QuoteStore
from repositories.supplier_repo import SupplierDirectory
from services.db import Database


@pytest.fixture
def database(tmp_path):
    db = Database(path=str(tmp_path / "quotes.db"))
    db.init_schema()
    return db


@pytest.fixture
def directory(database):
    return SupplierDirectory(database)


@pytest.fixture
def store(database):
    return QuoteStore(database)


@pytest.fixture
def memory(database):
    return PurchaseMemory(database)


@pytest.fixture
def add_supplier(directory):
    def _add(supplier_id, name, address, categories=("graos",), locality="Campo Grande", active=True):
        supplier = Supplier(
            id=supplier_id,
            name=name,
            address=address,
            locality=locality,
            categories=list(categories),
            rating=4.0,
        )
        directory.add(supplier)
        if not active:
            directory.deactivate(supplier_id)
        return supplier

    return _add
