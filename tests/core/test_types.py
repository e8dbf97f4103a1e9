"""Tests for shared types."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from vaultsync.core.types import (
    BackupArtifact,
    BackupMetadata,
    DispatchOutcome,
    DispatchResult,
    DocumentKind,
    DocumentSyncResult,
    ProviderSyncResult,
    RunSummary,
    SyncAction,
    SyncDecision,
    SyncSummary,
    TransientProviderError,
    parse_timestamp,
    to_iso,
)


class TestTimestamps:
    """Tests for timestamp helpers."""

    def test_to_iso_millis_and_z(self) -> None:
        """Should format with milliseconds and a Z suffix."""
        moment = datetime(2024, 1, 5, 8, 30, 0, 123456, tzinfo=UTC)
        assert to_iso(moment) == "2024-01-05T08:30:00.123Z"

    def test_to_iso_converts_offset(self) -> None:
        """Should convert other offsets to UTC."""
        moment = datetime(2024, 1, 5, 10, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_iso(moment) == "2024-01-05T08:00:00.000Z"

    def test_parse_timestamp(self) -> None:
        """Should parse Z-suffixed and naive timestamps as UTC."""
        expected = datetime(2024, 1, 5, 8, 30, tzinfo=UTC)
        assert parse_timestamp("2024-01-05T08:30:00.000Z") == expected
        assert parse_timestamp("2024-01-05T08:30:00") == expected

    def test_parse_invalid(self) -> None:
        """Should raise ValueError for garbage."""
        with pytest.raises(ValueError):
            parse_timestamp("yesterday")


class TestBackupMetadata:
    """Tests for BackupMetadata serialization."""

    def test_to_dict_uses_manifest_keys(self) -> None:
        """Should write camelCase keys and leave out the storage key."""
        metadata = BackupMetadata(
            timestamp="2024-01-05T08:30:00.000Z",
            collection_name="vault",
            document_id="2024-01-05",
            kind=DocumentKind.JOURNAL,
            relative_path="journals/2024_01_05.md",
            file_name="2024_01_05.md",
            size_bytes=12,
            journal_day="20240105",
            storage_key="vault/journals/2024_01_05.md",
        )
        data = metadata.to_dict()
        assert data["collectionName"] == "vault"
        assert data["relativePath"] == "journals/2024_01_05.md"
        assert data["journalDay"] == "20240105"
        assert data["kind"] == "journal"
        assert "storageKey" not in data

        restored = BackupMetadata.from_dict(data, storage_key="k")
        assert restored.kind is DocumentKind.JOURNAL
        assert restored.storage_key == "k"
        assert restored.size_bytes == 12

    def test_from_dict_defaults(self) -> None:
        """Should tolerate a manifest with only a timestamp."""
        metadata = BackupMetadata.from_dict({"timestamp": "2024-01-05T08:30:00.000Z"})
        assert metadata.collection_name == "unknown"
        assert metadata.kind is DocumentKind.PAGE
        assert metadata.relative_path is None

    def test_artifact_repr_elides_payload(self) -> None:
        """Should not print the payload."""
        artifact = BackupArtifact(
            document_id="note",
            payload=b"x" * 1000,
            metadata=BackupMetadata("t", "vault", "note", relative_path="pages/note.md"),
        )
        assert repr(artifact) == "BackupArtifact('note', path='pages/note.md', size=1000)"


class TestDispatchResult:
    """Tests for the three-way outcome."""

    @pytest.mark.parametrize(
        ("success", "total", "outcome"),
        [
            (3, 3, DispatchOutcome.FULL),
            (2, 3, DispatchOutcome.PARTIAL),
            (0, 3, DispatchOutcome.FAILED),
            (0, 0, DispatchOutcome.FAILED),
        ],
    )
    def test_outcome(self, success: int, total: int, outcome: DispatchOutcome) -> None:
        """Should classify by success and total counts."""
        assert DispatchResult(success, total).outcome is outcome


class TestSummaries:
    """Tests for run and sync summaries."""

    def test_run_summary_message(self) -> None:
        """Should report succeeded, failed and skipped counts."""
        summary = RunSummary(succeeded=2, failed=1, skipped=3)
        assert summary.total == 6
        assert summary.message() == "Backup completed: 2 succeeded, 1 failed, 3 skipped"

    def test_sync_summary_counts_one_bucket_per_document(self) -> None:
        """Should prefer skipped, then failed, then pulled, then pushed."""
        summary = SyncSummary()
        summary.add(DocumentSyncResult("a", skipped=True))
        summary.add(
            DocumentSyncResult(
                "b",
                [
                    ProviderSyncResult("s3", SyncDecision.REMOTE_NEWER, SyncAction.PULL),
                    ProviderSyncResult("local", None, ok=False, error="down"),
                ],
            )
        )
        summary.add(
            DocumentSyncResult(
                "c",
                [
                    ProviderSyncResult("s3", SyncDecision.REMOTE_NEWER, SyncAction.PULL),
                    ProviderSyncResult("local", SyncDecision.LOCAL_NEWER, SyncAction.PUSH),
                ],
            )
        )
        summary.add(
            DocumentSyncResult("d", [ProviderSyncResult("s3", SyncDecision.REMOTE_MISSING, SyncAction.PUSH)])
        )
        summary.add(DocumentSyncResult("e", [ProviderSyncResult("s3", SyncDecision.SAME)]))

        assert (summary.skipped, summary.failed, summary.pulled, summary.pushed, summary.unchanged) == (
            1,
            1,
            1,
            1,
            1,
        )
        assert summary.message().startswith("Sync completed: 1 pushed, 1 pulled")

    def test_transient_error_names_provider(self) -> None:
        """Should prefix the message with the provider name."""
        error = TransientProviderError("s3", "timeout")
        assert error.provider == "s3"
        assert str(error) == "s3: timeout"
