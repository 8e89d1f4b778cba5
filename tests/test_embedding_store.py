"""Tests for embedding store persistence backends."""

import json
from unittest.mock import MagicMock, patch

import pytest

from nbassist.core.errors import PersistenceFailure
from nbassist.core.schemas_cells import EmbeddingEntry
from nbassist.db.embedding_store import (
    FileEmbeddingStore,
    SupabaseEmbeddingStore,
    get_embedding_store,
    store_relative_path,
)


def _entries():
    return [
        EmbeddingEntry.from_source("c1", "import pandas as pd", [0.1, 0.2]),
        EmbeddingEntry.from_source("c2", "df = pd.DataFrame()", [0.3, 0.4]),
    ]


def test_store_relative_path():
    assert str(store_relative_path("analysis/sales.ipynb")) == "analysis/sales_embeddings.json"
    assert str(store_relative_path("/nb.ipynb")) == "nb_embeddings.json"
    assert str(store_relative_path("notes.py")) == "notes.py_embeddings.json"


@pytest.mark.parametrize("bad_path", ["../secret.ipynb", "a/../../b.ipynb", "", "/"])
def test_store_relative_path_rejects_escapes(bad_path):
    with pytest.raises(PersistenceFailure):
        store_relative_path(bad_path)


class TestFileEmbeddingStore:
    def test_load_missing_returns_none(self, tmp_path):
        assert FileEmbeddingStore(tmp_path).load("nb.ipynb") is None

    def test_save_writes_record_format(self, tmp_path):
        store = FileEmbeddingStore(tmp_path)

        store.save("analysis/sales.ipynb", _entries())

        path = tmp_path / "analysis" / "sales_embeddings.json"
        records = json.loads(path.read_text())
        assert [set(record) for record in records] == [{"id", "source", "hash", "embedding"}] * 2
        assert records[0]["source"] == "import pandas as pd"
        assert not path.with_name(path.name + ".tmp").exists()

    def test_save_then_load(self, tmp_path):
        store = FileEmbeddingStore(tmp_path)
        store.save("nb.ipynb", _entries())

        assert store.load("nb.ipynb") == _entries()

    def test_invalid_records_are_skipped(self, tmp_path):
        good = _entries()[0].to_record()
        tampered = dict(_entries()[1].to_record(), source="changed")
        (tmp_path / "nb_embeddings.json").write_text(json.dumps([good, tampered, {"id": 1}]))

        loaded = FileEmbeddingStore(tmp_path).load("nb.ipynb")

        assert [entry.id for entry in loaded] == ["c1"]

    def test_corrupt_file_raises(self, tmp_path):
        (tmp_path / "nb_embeddings.json").write_text("{not json")

        with pytest.raises(PersistenceFailure, match="Cannot read"):
            FileEmbeddingStore(tmp_path).load("nb.ipynb")

    def test_non_list_payload_raises(self, tmp_path):
        (tmp_path / "nb_embeddings.json").write_text(json.dumps({"entries": []}))

        with pytest.raises(PersistenceFailure, match="not a list"):
            FileEmbeddingStore(tmp_path).load("nb.ipynb")


def _mock_supabase(data=None, error=None):
    client = MagicMock()
    table = client.table.return_value
    query = table.select.return_value.eq.return_value.limit.return_value
    if error is not None:
        query.execute.side_effect = error
        table.upsert.return_value.execute.side_effect = error
    else:
        query.execute.return_value = MagicMock(data=data or [])
    return client


class TestSupabaseEmbeddingStore:
    def test_load_missing_row_returns_none(self):
        client = _mock_supabase(data=[])

        assert SupabaseEmbeddingStore(client, "notebook_embeddings").load("nb.ipynb") is None
        client.table.assert_called_with("notebook_embeddings")
        client.table.return_value.select.return_value.eq.assert_called_once_with(
            "document_path", "nb.ipynb"
        )

    def test_load_parses_entries(self):
        records = [entry.to_record() for entry in _entries()]
        client = _mock_supabase(data=[{"entries": records}])

        loaded = SupabaseEmbeddingStore(client, "notebook_embeddings").load("nb.ipynb")

        assert loaded == _entries()

    def test_save_upserts_one_row_per_document(self):
        client = _mock_supabase()

        SupabaseEmbeddingStore(client, "notebook_embeddings").save("nb.ipynb", _entries())

        row = client.table.return_value.upsert.call_args.args[0]
        assert row["document_path"] == "nb.ipynb"
        assert [record["id"] for record in row["entries"]] == ["c1", "c2"]
        assert client.table.return_value.upsert.call_args.kwargs == {
            "on_conflict": "document_path"
        }

    def test_errors_become_persistence_failures(self):
        client = _mock_supabase(error=Exception("connection reset"))
        store = SupabaseEmbeddingStore(client, "notebook_embeddings")

        with pytest.raises(PersistenceFailure):
            store.load("nb.ipynb")
        with pytest.raises(PersistenceFailure):
            store.save("nb.ipynb", _entries())


def test_get_embedding_store_selects_backend(tmp_path):
    settings = MagicMock(EMBEDDING_STORE_BACKEND="file", EMBEDDINGS_DIR=str(tmp_path))
    with patch("nbassist.db.embedding_store.get_settings", return_value=settings):
        store = get_embedding_store()
    assert isinstance(store, FileEmbeddingStore)
    assert store.root == tmp_path

    settings = MagicMock(EMBEDDING_STORE_BACKEND="supabase", EMBEDDINGS_TABLE="nb_embeddings")
    client = MagicMock()
    with (
        patch("nbassist.db.embedding_store.get_settings", return_value=settings),
        patch("nbassist.db.supabase_client.get_supabase", return_value=client),
    ):
        store = get_embedding_store()
    assert isinstance(store, SupabaseEmbeddingStore)
    assert store.client is client
    assert store.table == "nb_embeddings"
