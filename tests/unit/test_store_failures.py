"""Backend failures: rollback, rollback-failure reporting and conflicts."""

from __future__ import annotations

import pytest

from larder.core.cookbook_store import CookbookStore
from larder.core.errors import BackendFailure, ConcurrentConflict, CorruptRecord, StoreError
from larder.models.cookbook import Cookbook


def _seed(store: CookbookStore, make_version) -> Cookbook:
    store.save_version(make_version(version="1.0.0", checksums=("A", "B")))
    store.save_version(make_version(version="2.0.0", checksums=("B", "C")))
    return store.load("apache2")


class TestDeleteFailures:
    def test_delete_cookbook_failure_rolls_back(
        self, flaky_store, flaky_provider, published, make_version
    ):
        cookbook = _seed(flaky_store, make_version)
        flaky_provider.fail_on = "DELETE FROM cookbooks"

        with pytest.raises(BackendFailure, match="disk I/O error") as excinfo:
            flaky_store.delete_cookbook(cookbook)

        assert excinfo.value.rollback_error is None
        assert published == []
        flaky_provider.fail_on = None
        assert flaky_store.exists("apache2") is True
        assert [v.version for v in flaky_store.list_versions(cookbook)] == ["2.0.0", "1.0.0"]

    def test_rollback_failure_is_reported(
        self, flaky_store, flaky_provider, published, make_version
    ):
        cookbook = _seed(flaky_store, make_version)
        flaky_provider.fail_on = "DELETE FROM cookbooks"
        flaky_provider.fail_rollback = True

        with pytest.raises(BackendFailure) as excinfo:
            flaky_store.delete_cookbook(cookbook)

        message = str(excinfo.value)
        assert "disk I/O error" in message
        assert "connection lost during rollback" in message
        assert excinfo.value.rollback_error == "connection lost during rollback"
        assert published == []

        flaky_provider.fail_on = None
        flaky_provider.fail_rollback = False
        assert flaky_store.count_versions(cookbook) == 2

    def test_delete_version_failure_rolls_back(
        self, flaky_store, flaky_provider, published, make_version
    ):
        cookbook = _seed(flaky_store, make_version)
        version = flaky_store.get_version(cookbook, "2.0.0")
        flaky_provider.fail_on = "DELETE FROM cookbook_versions"
        flaky_provider.fail_rollback = True

        with pytest.raises(StoreError) as excinfo:
            flaky_store.delete_version(version)

        assert "disk I/O error" in str(excinfo.value)
        assert "rollback" in str(excinfo.value)
        assert published == []
        flaky_provider.fail_on = None
        flaky_provider.fail_rollback = False
        assert flaky_store.get_version(cookbook, "2.0.0").id == version.id

    def test_delete_cookbook_sees_update_after_listing(
        self, store, published, make_version
    ):
        cookbook = _seed(store, make_version)
        store.list_versions(cookbook)
        store.save_version(make_version(version="1.0.0", checksums=("Z",)))

        event = store.delete_cookbook(cookbook)

        assert event.hashes == ["B", "C", "Z"]
        assert published == [event]

    def test_corrupt_row_aborts_cookbook_delete(self, store, provider, published, make_version):
        cookbook = _seed(store, make_version)
        with provider.transaction(write=True) as tx:
            tx.execute("UPDATE cookbook_versions SET recipes = ? WHERE major_ver = 2", (b"[",))

        with pytest.raises(CorruptRecord, match="apache2-2.0.0"):
            store.delete_cookbook(cookbook)

        assert published == []
        assert store.exists("apache2") is True
        assert store.count_versions(cookbook) == 2


class TestWriteFailures:
    def test_save_version_backend_failure(self, flaky_store, flaky_provider, make_version):
        flaky_provider.fail_on = "INSERT INTO cookbook_versions"
        version = make_version()
        with pytest.raises(BackendFailure):
            flaky_store.save_version(version)
        assert version.id is None

        flaky_provider.fail_on = None
        # The implicit cookbook insert was part of the failed transaction.
        assert flaky_store.exists("apache2") is False

    def test_lost_race_maps_to_conflict(self, flaky_store, flaky_provider):
        flaky_store.save(Cookbook(name="apache2"))
        flaky_provider.blind_probe = True

        cookbook = Cookbook(name="apache2")
        with pytest.raises(ConcurrentConflict):
            flaky_store.save(cookbook)
        assert cookbook.id is None

    def test_unknown_cookbook_id_is_backend_failure(self, store, make_version):
        with pytest.raises(BackendFailure):
            store.save_version(make_version(cookbook_id=9999))


class TestCorruptRecords:
    def test_listing_aborts_on_corrupt_row(self, store, provider, make_version):
        _seed(store, make_version)
        with provider.transaction(write=True) as tx:
            tx.execute(
                "UPDATE cookbook_versions SET templates = ? WHERE major_ver = 1",
                (b"\xffnot-json",),
            )
        cookbook = store.load("apache2")

        with pytest.raises(CorruptRecord, match="apache2-1.0.0"):
            store.list_versions(cookbook)
        with pytest.raises(CorruptRecord):
            store.get_version(cookbook, "1.0.0")
        assert store.get_version(cookbook, "2.0.0").version == "2.0.0"

    def test_referenced_hashes_refuses_corrupt_rows(self, store, provider, make_version):
        _seed(store, make_version)
        with provider.transaction(write=True) as tx:
            tx.execute("UPDATE cookbook_versions SET files = ?", (b"{",))
        with pytest.raises(CorruptRecord):
            store.referenced_hashes()
