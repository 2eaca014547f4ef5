"""
Test suite for the document store

Tests the default schema, migration, revisions and the JSON file store.
"""

import json

import pytest

from env_admin.exceptions import ConflictError, StorageIOError
from env_admin.passwords import hash_password_legacy, make_password, needs_rehash, verify_password
from env_admin.storage import (
    COLLECTIONS, InMemoryDocumentStore, JSONFileDocumentStore, build_initial_document
)


class TestInitialDocument:
    """Test the document written on first use"""
    
    def test_default_schema(self):
        """Test that every collection and the seed admin are present"""
        data = build_initial_document("root", "pw")
        for collection in COLLECTIONS:
            assert isinstance(data[collection], list)
        assert data["revision"] == 0
        assert data["ultimaSincronizacao"] is None
        assert [b["id"] for b in data["bancosDisponiveis"]] == ["presencabank", "v8", "hubcredito"]
        
        admin = data["admin"]["usuarios"][0]
        assert admin["username"] == "root"
        assert verify_password("pw", admin["passwordHash"], admin["passwordSalt"])


class TestPasswords:
    """Test salted and legacy password hashes"""
    
    def test_salted_hash(self):
        """Test a fresh hash verifies and uses a unique salt"""
        first_hash, first_salt = make_password("secret")
        second_hash, second_salt = make_password("secret")
        assert first_salt != second_salt
        assert first_hash != second_hash
        assert verify_password("secret", first_hash, first_salt)
        assert not verify_password("wrong", first_hash, first_salt)
    
    def test_legacy_hash(self):
        """Test unsalted SHA-256 records still verify and need a rehash"""
        legacy = hash_password_legacy("admin123")
        assert verify_password("admin123", legacy, None)
        assert needs_rehash(None)
        assert not needs_rehash("abc")
    
    def test_missing_hash_never_verifies(self):
        assert not verify_password("", None, None)


class TestInMemoryDocumentStore:
    """Test update semantics"""
    
    def setup_method(self):
        self.store = InMemoryDocumentStore()
    
    def test_update_increments_revision(self):
        """Test each update bumps the revision and returns the transform result"""
        result = self.store.update(lambda data: data["perfis"].append({"id": "p1"}) or "done")
        assert result == "done"
        document = self.store.get()
        assert document.revision == 1
        assert document.data["perfis"] == [{"id": "p1"}]
    
    def test_get_returns_private_copy(self):
        """Test that mutating a snapshot does not change the store"""
        self.store.get().data["perfis"].append({"id": "ghost"})
        assert self.store.get().data["perfis"] == []
    
    def test_failed_transform_writes_nothing(self):
        """Test that a raising transform leaves the document untouched"""
        def transform(data):
            data["perfis"].append({"id": "partial"})
            raise ValueError("boom")
        
        with pytest.raises(ValueError):
            self.store.update(transform)
        document = self.store.get()
        assert document.revision == 0
        assert document.data["perfis"] == []
    
    def test_stale_revision_conflicts(self):
        """Test optimistic concurrency on an explicit expected revision"""
        snapshot = self.store.get()
        self.store.update(lambda data: None, expected_revision=snapshot.revision)
        
        with pytest.raises(ConflictError) as exc_info:
            self.store.update(lambda data: None, expected_revision=snapshot.revision)
        assert exc_info.value.code == "REVISION_CONFLICT"
        assert self.store.get().revision == 1
    
    def test_migrates_old_documents(self):
        """Test that documents without profiles or logins gain them"""
        store = InMemoryDocumentStore({"admin": {"usuarios": []}, "ambientes": []})
        data = store.get().data
        assert data["perfis"] == []
        assert data["logins"] == []
        assert data["bancosDisponiveis"] == []
        assert data["revision"] == 0


class TestJSONFileDocumentStore:
    """Test the JSON file store"""
    
    def test_creates_file_on_first_read(self, tmp_path):
        """Test a missing database is initialised from the default schema"""
        path = tmp_path / "data" / "database.json"
        store = JSONFileDocumentStore(path, admin_username="boss", admin_password="pw")
        
        document = store.get()
        
        assert path.exists()
        assert document.data["admin"]["usuarios"][0]["username"] == "boss"
    
    def test_persists_updates(self, tmp_path):
        """Test updates survive a new store instance"""
        path = tmp_path / "database.json"
        JSONFileDocumentStore(path).update(lambda data: data["perfis"].append({"id": "p1", "nome": "Ops"}))
        
        reopened = JSONFileDocumentStore(path).get()
        assert reopened.data["perfis"] == [{"id": "p1", "nome": "Ops"}]
        assert reopened.revision == 1
    
    def test_keeps_non_ascii_text(self, tmp_path):
        """Test accented names are written as UTF-8"""
        path = tmp_path / "database.json"
        JSONFileDocumentStore(path).update(lambda data: data["perfis"].append({"nome": "Presença"}))
        assert "Presença" in path.read_text(encoding="utf-8")
    
    def test_corrupt_file(self, tmp_path):
        """Test an unreadable document raises StorageIOError"""
        path = tmp_path / "database.json"
        path.write_text("{not json")
        with pytest.raises(StorageIOError) as exc_info:
            JSONFileDocumentStore(path).get()
        assert exc_info.value.code == "DB_READ_ERROR"
    
    def test_non_object_document(self, tmp_path):
        path = tmp_path / "database.json"
        path.write_text(json.dumps([1, 2, 3]))
        with pytest.raises(StorageIOError):
            JSONFileDocumentStore(path).get()
