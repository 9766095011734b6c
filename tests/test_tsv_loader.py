"""Tests for the tab-delimited export loader."""
from callsync.services import tsv_loader
from callsync.services.store import UpsertPolicy
from callsync.services.tsv_loader import load_export

from conftest import conversation_json

HEADER = "VendorCallKey\tConversation\tAgentName\tDepartment\tDisposition\tDurationInSeconds\tCallStartDateTime\n"


def write_export(path, lines):
    path.write_text(HEADER + "".join(line + "\n" for line in lines), encoding="utf-8")
    return path


class TestLoadExport:
    def test_imports_rows_and_skips_missing_keys(self, tmp_path, store):
        conversation = conversation_json(("Agent", "Hello", 1), ("EndUser", "Hi", 2))
        path = write_export(tmp_path / "calls.tsv", [
            f"K1\t{conversation}\tAlice\tServicing\tPayment\t120\t2025-12-02 09:00:00",
            f"K2\t{conversation}\tBob\tServicing\tEscrow\t60.6\t2025-12-02 10:00:00",
            f"\t{conversation}\tEve\tServicing\tEscrow\t60\t2025-12-02 11:00:00",
        ])

        stats = load_export(path, store)

        assert stats.summary() == {"total": 3, "imported": 2, "skipped": 1, "errors": 0, "error_messages": []}
        k2 = store.get_transcript("K2")
        assert k2.duration_seconds == 61
        assert [m.speaker for m in k2.messages] == ["agent", "customer"]

    def test_fill_missing_backfills_empty_columns(self, tmp_path, store):
        first = write_export(tmp_path / "first.tsv", ["K1\t\t\tServicing\t\t\t2025-12-02 09:00:00"])
        load_export(first, store)

        second = write_export(tmp_path / "second.tsv", ["K1\t\tAlice\tCollections\tPayment\t120\t"])
        load_export(second, store, UpsertPolicy.FILL_MISSING)

        stored = store.get_transcript("K1")
        assert stored.agent_name == "Alice"
        assert stored.department == "Servicing"
        assert stored.duration_seconds == 120
        assert stored.call_start is not None

    def test_non_string_message_text_still_imports(self, tmp_path, store):
        bad = '{"conversationEntries":[{"sender":{"role":"Agent"},"messageText":123}]}'
        good = conversation_json(("Agent", "Hello", 1))
        path = write_export(tmp_path / "calls.tsv", [
            f"BAD\t{bad}\tAlice\tServicing\tPayment\t120\t2025-12-02 09:00:00",
            f"GOOD\t{good}\tBob\tServicing\tEscrow\t60\t2025-12-02 10:00:00",
        ])

        stats = load_export(path, store)

        assert stats.imported == 2
        assert stats.errors == 0
        assert store.get_transcript("BAD").messages[0].text == "123"

    def test_failing_rows_are_counted_and_later_rows_import(self, tmp_path, store, monkeypatch):
        conversation = conversation_json(("Agent", "Hello", 1))
        path = write_export(tmp_path / "calls.tsv", [
            f"K1\t{conversation}\tAlice\tServicing\tPayment\t120\t2025-12-02 09:00:00",
            f"K2\t{conversation}\tBob\tServicing\tEscrow\t60\t2025-12-02 10:00:00",
            f"K3\t{conversation}\tCarl\tServicing\tEscrow\t60\t2025-12-02 11:00:00",
        ])

        real_transform = tsv_loader.transform_record

        def transform(row):
            if row["VendorCallKey"] == "K1":
                raise ValueError("bad row")
            return real_transform(row)

        real_upsert = store.upsert_transcript

        def upsert(record, policy=UpsertPolicy.OVERWRITE):
            if record.vendor_call_key == "K2":
                raise RuntimeError("constraint violation")
            return real_upsert(record, policy)

        monkeypatch.setattr(tsv_loader, "transform_record", transform)
        monkeypatch.setattr(store, "upsert_transcript", upsert)

        stats = load_export(path, store)

        assert stats.total == 3
        assert stats.imported == 1
        assert stats.errors == 2
        assert stats.error_messages == ["K1: transform failed: bad row", "K2: constraint violation"]
        assert store.get_transcript("K3") is not None
        assert store.get_transcript("K1") is None

    def test_error_messages_are_capped(self, tmp_path, store, monkeypatch):
        path = write_export(tmp_path / "calls.tsv", [
            f"K{i}\t\tAlice\tServicing\tPayment\t120\t2025-12-02 09:00:00" for i in range(4)
        ])

        def transform(row):
            raise ValueError("bad row")

        monkeypatch.setattr(tsv_loader, "transform_record", transform)

        stats = load_export(path, store, error_limit=2)

        assert stats.errors == 4
        assert len(stats.error_messages) == 2
