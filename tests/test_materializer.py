"""Tests for AttachmentMaterializer placement, counters and cleanup."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from conftest import b64url

from gmail_attachments.core.classifier import JSON
from gmail_attachments.core.exceptions import AttachmentFetchFailed
from gmail_attachments.core.models import (
    DestinationPolicy,
    MessageDetail,
    Part,
    ProgressCounters,
)
from gmail_attachments.storage.materializer import (
    AttachmentMaterializer,
    dedupe_filename,
    resolve_target,
    safe_filename,
)


@pytest.fixture
def mock_client() -> MagicMock:
    """Client whose attachments decode to '<attachment_id>-bytes'."""
    client = MagicMock()
    client.get_attachment.side_effect = lambda msg_id, att_id: b64url(f"{att_id}-bytes".encode())
    return client


def _report(message_id: str) -> MessageDetail:
    return MessageDetail(
        message_id=message_id,
        parts=(Part(mime_type="application/pdf", filename="report.pdf", attachment_id=f"{message_id}-att"),),
    )


class TestResolveTarget:
    def test_flat_prefixes_message_id(self, tmp_path: Path) -> None:
        target = resolve_target(tmp_path, "A", "report.pdf", DestinationPolicy.FLAT)
        assert target.directory == tmp_path
        assert target.filename == "A_report.pdf"

    def test_subfolder_keeps_filename(self, tmp_path: Path) -> None:
        target = resolve_target(tmp_path, "A", "report.pdf", DestinationPolicy.SUBFOLDER)
        assert target.path == tmp_path / "A" / "report.pdf"

    def test_path_components_are_stripped(self, tmp_path: Path) -> None:
        target = resolve_target(tmp_path, "A", "../../etc/passwd", DestinationPolicy.FLAT)
        assert target.path == tmp_path / "A_passwd"

    @pytest.mark.parametrize("name", ["", "..", "dir/", "a\\.."])
    def test_degenerate_names(self, name: str) -> None:
        assert safe_filename(name) == "attachment"


class TestMaterializeFlat:
    def test_writes_decoded_bytes(
        self, tmp_output_dir: Path, mock_client: MagicMock, json_and_pdf_detail: MessageDetail
    ) -> None:
        materializer = AttachmentMaterializer(mock_client, tmp_output_dir)

        count = materializer.materialize(json_and_pdf_detail, extensions=JSON)

        assert count == 2
        assert (tmp_output_dir / "msgA_data.json").read_bytes() == b"att1-bytes"
        assert (tmp_output_dir / "msgA_MORE.JSON").read_bytes() == b"att2-bytes"
        assert not (tmp_output_dir / "msgA_invoice.pdf").exists()

    def test_no_filter_downloads_all(
        self, tmp_output_dir: Path, mock_client: MagicMock, json_and_pdf_detail: MessageDetail
    ) -> None:
        count = AttachmentMaterializer(mock_client, tmp_output_dir).materialize(json_and_pdf_detail)
        assert count == 3

    def test_same_filename_in_two_messages(self, tmp_output_dir: Path, mock_client: MagicMock) -> None:
        materializer = AttachmentMaterializer(mock_client, tmp_output_dir, DestinationPolicy.FLAT)

        materializer.materialize(_report("A"))
        materializer.materialize(_report("B"))

        assert sorted(p.name for p in tmp_output_dir.iterdir()) == ["A_report.pdf", "B_report.pdf"]
        assert (tmp_output_dir / "A_report.pdf").read_bytes() == b"A-att-bytes"
        assert (tmp_output_dir / "B_report.pdf").read_bytes() == b"B-att-bytes"

    def test_fetches_with_message_and_attachment_id(
        self, tmp_output_dir: Path, mock_client: MagicMock
    ) -> None:
        AttachmentMaterializer(mock_client, tmp_output_dir).materialize(_report("A"))
        mock_client.get_attachment.assert_called_once_with("A", "A-att")


class TestEmptyMessages:
    def test_no_parts_touches_nothing(self, tmp_path: Path, mock_client: MagicMock) -> None:
        base = tmp_path / "not-created"
        materializer = AttachmentMaterializer(mock_client, base, DestinationPolicy.SUBFOLDER)

        assert materializer.materialize(MessageDetail(message_id="m")) == 0
        assert not base.exists()
        mock_client.get_attachment.assert_not_called()

    def test_no_qualifying_parts_leaves_no_subfolder(
        self, tmp_output_dir: Path, mock_client: MagicMock
    ) -> None:
        materializer = AttachmentMaterializer(mock_client, tmp_output_dir, DestinationPolicy.SUBFOLDER)

        assert materializer.materialize(_report("A"), extensions=JSON) == 0
        assert list(tmp_output_dir.iterdir()) == []


class TestMaterializeSubfolder:
    def test_writes_into_message_folder(
        self, tmp_output_dir: Path, mock_client: MagicMock, json_and_pdf_detail: MessageDetail
    ) -> None:
        materializer = AttachmentMaterializer(mock_client, tmp_output_dir, DestinationPolicy.SUBFOLDER)

        materializer.materialize(json_and_pdf_detail, extensions=JSON)

        folder = tmp_output_dir / "msgA"
        assert sorted(p.name for p in folder.iterdir()) == ["MORE.JSON", "data.json"]

    def test_all_fetches_fail_removes_created_folder(
        self, tmp_output_dir: Path, mock_client: MagicMock
    ) -> None:
        mock_client.get_attachment.side_effect = AttachmentFetchFailed("gone")
        materializer = AttachmentMaterializer(mock_client, tmp_output_dir, DestinationPolicy.SUBFOLDER)

        assert materializer.materialize(_report("A")) == 0
        assert not (tmp_output_dir / "A").exists()

    def test_existing_folder_is_kept(self, tmp_output_dir: Path, mock_client: MagicMock) -> None:
        (tmp_output_dir / "A").mkdir()
        mock_client.get_attachment.side_effect = AttachmentFetchFailed("gone")
        materializer = AttachmentMaterializer(mock_client, tmp_output_dir, DestinationPolicy.SUBFOLDER)

        materializer.materialize(_report("A"))

        assert (tmp_output_dir / "A").is_dir()


class TestFailuresAndProgress:
    def test_failed_sibling_does_not_stop_others(
        self, tmp_output_dir: Path, mock_client: MagicMock, json_and_pdf_detail: MessageDetail
    ) -> None:
        def fetch(msg_id: str, att_id: str) -> str:
            if att_id == "att1":
                raise AttachmentFetchFailed("expired")
            return b64url(b"ok")

        mock_client.get_attachment.side_effect = fetch
        progress = ProgressCounters()

        count = AttachmentMaterializer(mock_client, tmp_output_dir).materialize(
            json_and_pdf_detail, progress, JSON
        )

        assert count == 1
        assert progress.downloaded_attachments == 1
        assert progress.failed_attachments == 1
        assert (tmp_output_dir / "msgA_MORE.JSON").exists()

    def test_undecodable_payload_is_a_fetch_failure(
        self, tmp_output_dir: Path, mock_client: MagicMock
    ) -> None:
        mock_client.get_attachment.side_effect = None
        mock_client.get_attachment.return_value = "a"
        progress = ProgressCounters()

        count = AttachmentMaterializer(mock_client, tmp_output_dir).materialize(_report("A"), progress)

        assert count == 0
        assert progress.failed_attachments == 1
        assert list(tmp_output_dir.iterdir()) == []

    def test_write_failure_is_contained(
        self, tmp_output_dir: Path, mock_client: MagicMock, json_and_pdf_detail: MessageDetail
    ) -> None:
        progress = ProgressCounters()
        real_replace = os.replace
        calls: list[Path] = []

        def flaky_replace(src: Path, dst: Path) -> None:
            calls.append(dst)
            if len(calls) == 1:
                raise OSError("disk full")
            real_replace(src, dst)

        with patch("gmail_attachments.storage.materializer.os.replace", side_effect=flaky_replace):
            count = AttachmentMaterializer(mock_client, tmp_output_dir).materialize(
                json_and_pdf_detail, progress, JSON
            )

        assert count == 1
        assert progress.downloaded_attachments == 1
        assert progress.failed_attachments == 1
        assert not any(p.name.endswith(".part") for p in tmp_output_dir.iterdir())

    def test_counter_updated_after_write(
        self, tmp_output_dir: Path, mock_client: MagicMock
    ) -> None:
        progress = ProgressCounters()
        seen: list[tuple[bool, int]] = []

        def on_saved(path: Path) -> None:
            seen.append((path.exists(), progress.downloaded_attachments))

        materializer = AttachmentMaterializer(mock_client, tmp_output_dir, on_saved=on_saved)
        materializer.materialize(_report("A"), progress)

        assert seen == [(True, 1)]


class TestDuplicateNames:
    def test_same_name_twice_in_one_message(
        self, tmp_output_dir: Path, mock_client: MagicMock
    ) -> None:
        detail = MessageDetail(
            message_id="A",
            parts=(
                Part(filename="r.json", attachment_id="first"),
                Part(filename="r.json", attachment_id="second"),
            ),
        )
        progress = ProgressCounters()

        count = AttachmentMaterializer(mock_client, tmp_output_dir).materialize(detail, progress)

        assert count == 2
        assert progress.downloaded_attachments == 2
        assert (tmp_output_dir / "A_r.json").read_bytes() == b"first-bytes"
        assert (tmp_output_dir / "A_r (1).json").read_bytes() == b"second-bytes"

    def test_subfolder_duplicates(self, tmp_output_dir: Path, mock_client: MagicMock) -> None:
        detail = MessageDetail(
            message_id="A",
            parts=(
                Part(filename="dir/r.json", attachment_id="first"),
                Part(filename="R.JSON", attachment_id="second"),
            ),
        )

        AttachmentMaterializer(mock_client, tmp_output_dir, DestinationPolicy.SUBFOLDER).materialize(
            detail
        )

        assert sorted(p.name for p in (tmp_output_dir / "A").iterdir()) == ["R (1).JSON", "r.json"]

    def test_dedupe_filename(self) -> None:
        taken: set[str] = set()
        assert dedupe_filename("r.json", taken) == "r.json"
        assert dedupe_filename("r.json", taken) == "r (1).json"
        assert dedupe_filename("r.json", taken) == "r (2).json"
        assert dedupe_filename("README", taken) == "README"
        assert dedupe_filename("README", taken) == "README (1)"
