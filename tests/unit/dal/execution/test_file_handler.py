"""Unit tests for SQL file validation and preprocessing."""

import pytest

from dal.execution import file_handler
from dal.execution.file_handler import preprocess_sql_content, read_sql_file, validate_sql_file


class TestValidateSqlFile:
    def test_requires_path(self):
        with pytest.raises(ValueError, match="file_path parameter is required"):
            validate_sql_file("  ")

    def test_rejects_other_extensions(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("SELECT 1")
        with pytest.raises(ValueError, match=r"Received file extension: \.txt"):
            validate_sql_file(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValueError, match="File not found"):
            validate_sql_file(str(tmp_path / "missing.sql"))

    def test_directory_is_not_a_file(self, tmp_path):
        directory = tmp_path / "migrations.sql"
        directory.mkdir()
        with pytest.raises(ValueError, match="Not a file"):
            validate_sql_file(str(directory))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.sql"
        path.write_text("")
        with pytest.raises(ValueError, match="File is empty"):
            validate_sql_file(str(path))

    def test_too_large(self, tmp_path, monkeypatch):
        monkeypatch.setattr(file_handler, "MAX_SQL_FILE_SIZE", 4)
        path = tmp_path / "big.sql"
        path.write_text("SELECT 1;")
        with pytest.raises(ValueError, match="File too large"):
            validate_sql_file(str(path))

    def test_uppercase_extension_is_accepted(self, tmp_path):
        path = tmp_path / "SCHEMA.SQL"
        path.write_text("SELECT 1;")
        assert validate_sql_file(str(path)) == path.resolve()


class TestPreprocess:
    def test_literal_pattern_removes_whole_lines(self):
        sql = "SELECT 1;\nGO\n  GO  \nSELECT 'GO';\n"
        assert preprocess_sql_content(sql, ["GO"]) == "SELECT 1;\n\n\nSELECT 'GO';\n"

    def test_regex_pattern(self):
        sql = "\\set ON_ERROR_STOP on\nSELECT 1;\n"
        assert preprocess_sql_content(sql, [r"^\\set .*$"], as_regex=True) == "\nSELECT 1;\n"

    def test_invalid_regex(self):
        with pytest.raises(ValueError, match="Invalid strip pattern"):
            preprocess_sql_content("SELECT 1", ["(unclosed"], as_regex=True)

    def test_empty_patterns_are_ignored(self):
        assert preprocess_sql_content("SELECT 1", ["", None]) == "SELECT 1"


def test_read_sql_file_applies_patterns(tmp_path):
    path = tmp_path / "deploy.sql"
    path.write_text("CREATE TABLE t (id int);\nGO\nINSERT INTO t VALUES (1);\n")

    sql_file = read_sql_file(str(path), strip_patterns=["GO"])

    assert sql_file.path == str(path.resolve())
    assert sql_file.size == path.stat().st_size
    assert "GO" not in sql_file.content
