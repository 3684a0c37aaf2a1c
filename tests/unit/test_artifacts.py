# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Tests for screenshot and download storage."""

import os
import time

import pytest

from gbprunner.core.artifacts import download_filename, file_type_label, sanitize_filename


class TestFilenames:
    def test_sanitize(self):
        assert sanitize_filename('a<b>c:d"e/f\\g|h?i*j.pdf') == "a_b_c_d_e_f_g_h_i_j.pdf"

    def test_suggested_name_wins(self):
        assert download_filename("Relatório.xlsx", "https://x/y") == "Relatório.xlsx"

    def test_url_segment_used_for_generic_name(self):
        assert download_filename("download", "https://x/files/report.csv?x=1") == "report.csv"

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://x/export?format=pdf", "document_1700.pdf"),
            ("https://x/export?type=excel", "spreadsheet_1700.xlsx"),
            ("https://x/export?type=word", "document_1700.docx"),
            ("https://x/export", "download_1700.bin"),
        ],
    )
    def test_defaults_by_hint(self, url, expected):
        assert download_filename(None, url, now_ms=1700) == expected

    def test_type_labels(self):
        assert file_type_label("a.PDF") == "PDF Document"
        assert file_type_label("a.xyz") == "Unknown File"


class TestArtifactStore:
    def test_save_and_list_screenshot(self, artifact_store):
        saved = artifact_store.save_screenshot(b"png")
        error = artifact_store.save_screenshot(b"png", error=True)

        assert saved["filename"].startswith("screenshot-")
        assert saved["url"] == f"/screenshots/{saved['filename']}"
        assert error["filename"].startswith("error-screenshot-")
        listed = {f["filename"] for f in artifact_store.list_screenshots()}
        assert listed == {saved["filename"], error["filename"]}

    def test_list_missing_dir(self, artifact_store):
        assert artifact_store.list_downloads() == []

    def test_download_path_is_sanitized(self, artifact_store):
        path = artifact_store.download_path("a/b.pdf")
        assert path.name == "a_b.pdf"
        assert path.parent == artifact_store.downloads_dir

    def test_cleanup_by_age(self, artifact_store):
        artifact_store.ensure_dirs()
        old = artifact_store.downloads_dir / "old.pdf"
        new = artifact_store.downloads_dir / "new.pdf"
        old.write_bytes(b"1")
        new.write_bytes(b"2")
        two_days_ago = time.time() - 48 * 3600
        os.utime(old, (two_days_ago, two_days_ago))

        removed = artifact_store.cleanup_downloads(24)

        assert removed == ["old.pdf"]
        assert not old.exists()
        assert new.exists()
