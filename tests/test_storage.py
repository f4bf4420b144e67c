"""
Tests for storage backends and transaction support
"""

import sqlite3
import threading

import pytest
import tempfile
from decimal import Decimal
from datetime import datetime, timezone, timedelta
from pathlib import Path

from p2p_lending.config import LendingConfig
from p2p_lending.storage import InMemoryStorage, SQLiteStorage, create_storage
from p2p_lending.loans import LoanRepository, LoanState, propose, approve, invest


# Test data
test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "100.50",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


def exercise_basic_operations(storage):
    storage.save("test_table", "record_1", test_data)
    loaded = storage.load("test_table", "record_1")
    assert loaded == test_data
    
    assert storage.exists("test_table", "record_1")
    assert not storage.exists("test_table", "non_existent")
    assert storage.load("test_table", "non_existent") is None
    
    storage.save("test_table", "record_2", {"id": "record_2", "data": "test"})
    assert len(storage.load_all("test_table")) == 2
    
    results = storage.find("test_table", {"id": "test_001"})
    assert len(results) == 1
    assert results[0]["id"] == "test_001"
    
    assert storage.count("test_table") == 2
    
    storage.clear_table("test_table")
    assert storage.count("test_table") == 0


class TestStorageInterface:
    """Test basic storage operations"""
    
    def test_in_memory_storage_basic_operations(self):
        storage = InMemoryStorage()
        exercise_basic_operations(storage)
        storage.close()
    
    def test_sqlite_storage_basic_operations(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = SQLiteStorage(Path(temp_dir) / "test.db")
            exercise_basic_operations(storage)
            storage.close()
    
    def test_in_memory_returns_copies(self):
        """Mutating a loaded record does not change storage"""
        storage = InMemoryStorage()
        storage.save("t", "r", {"value": 1})
        loaded = storage.load("t", "r")
        loaded["value"] = 2
        assert storage.load("t", "r")["value"] == 1


class TestTransactions:
    """Test atomic() commit and rollback"""
    
    @pytest.fixture(params=["memory", "sqlite"])
    def storage(self, request, tmp_path):
        if request.param == "memory":
            backend = InMemoryStorage()
        else:
            backend = SQLiteStorage(tmp_path / "tx.db")
        yield backend
        backend.close()
    
    def test_commit(self, storage):
        with storage.atomic():
            storage.save("t", "a", {"id": "a"})
        assert storage.exists("t", "a")
    
    def test_rollback_on_error(self, storage):
        storage.save("t", "keep", {"id": "keep"})
        
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("t", "discard", {"id": "discard"})
                raise RuntimeError("boom")
        
        assert storage.exists("t", "keep")
        assert not storage.exists("t", "discard")

    def test_nested_atomic_commits_with_outermost(self, storage):
        with pytest.raises(RuntimeError):
            with storage.atomic():
                with storage.atomic():
                    storage.save("t", "inner", {"id": "inner"})
                storage.save("t", "outer", {"id": "outer"})
                raise RuntimeError("boom")

        assert not storage.exists("t", "inner")
        assert not storage.exists("t", "outer")

    def test_transaction_blocks_other_threads(self, storage):
        """A second writer waits until the open transaction ends"""
        seen = []

        def writer():
            storage.save("t", "late", {"id": "late"})
            seen.append(storage.count("t"))

        with storage.atomic():
            storage.save("t", "first", {"id": "first"})
            thread = threading.Thread(target=writer)
            thread.start()
            thread.join(timeout=0.2)
            assert thread.is_alive()

        thread.join(timeout=5)
        assert seen == [2]


class TestSQLiteWriteLock:
    """BEGIN IMMEDIATE takes the database write lock up front"""

    def test_second_connection_cannot_write_during_transaction(self, tmp_path):
        first = SQLiteStorage(tmp_path / "lock.db")
        first.save("t", "a", {"id": "a"})
        other = sqlite3.connect(str(tmp_path / "lock.db"), timeout=0)
        try:
            with first.atomic():
                first.load("t", "a")
                with pytest.raises(sqlite3.OperationalError):
                    other.execute("BEGIN IMMEDIATE")
            other.execute("BEGIN IMMEDIATE")
            other.rollback()
        finally:
            other.close()
            first.close()


class TestSQLitePersistence:
    """Test loans survive reopening the database"""
    
    def test_loan_round_trip_across_connections(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "loans.db"
            t0 = datetime(2024, 1, 15, tzinfo=timezone.utc)
            
            storage = SQLiteStorage(db_path)
            repository = LoanRepository(storage)
            loan = propose("12345", "50000.00", "5.5", now=t0)
            repository.create(loan)
            repository.save(invest(
                repository.save(approve(loan, "proof.jpg", "emp123", t0)), "30000"
            ))
            storage.close()
            
            reopened = LoanRepository(SQLiteStorage(db_path))
            stored = reopened.find_by_id(loan.id)
            
            assert stored.state == LoanState.INVESTED
            assert stored.principal == Decimal('50000.00')
            assert stored.invested_amount == Decimal('30000')
            assert stored.approval_date == t0
            assert stored.version == 3
            reopened.storage.close()


class TestCreateStorage:
    """Test backend selection from configuration"""
    
    def test_memory_backend(self):
        assert isinstance(create_storage(LendingConfig(storage_backend="memory")), InMemoryStorage)
    
    def test_sqlite_backend(self, tmp_path):
        storage = create_storage(LendingConfig(
            storage_backend="sqlite", database_path=str(tmp_path / "x.db")
        ))
        assert isinstance(storage, SQLiteStorage)
        storage.close()
    
    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unsupported storage backend"):
            create_storage(LendingConfig(storage_backend="oracle"))
