"""
Unit Tests for Migration Set Loading.
"""

from pathlib import Path

import pytest

from schemachain.errors import MalformedMigrationError
from schemachain.migrations.loader import (
    FileSource,
    PackageResourceSource,
    StringSource,
    dump_migrations,
    load_migrations,
)
from schemachain.migrations.migration_set import MigrationSet


class TestLoader:
    """Test cases for migration sources."""

    def test_string_source(self, fixture_text: str, blog_migrations: MigrationSet) -> None:
        """Test loading an embedded set."""
        assert load_migrations(StringSource(fixture_text)) == blog_migrations

    def test_file_source(self, fixture_path: Path, blog_migrations: MigrationSet) -> None:
        """Test loading a set from a file."""
        assert load_migrations(FileSource(fixture_path)) == blog_migrations

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test that a missing file is reported as malformed input."""
        with pytest.raises(MalformedMigrationError, match="not found"):
            load_migrations(FileSource(tmp_path / "missing.json"))

    def test_package_resource_source(
        self,
        tmp_path: Path,
        fixture_text: str,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test loading a set shipped as package data."""
        package = tmp_path / "blog_app_migrations"
        package.mkdir()
        (package / "__init__.py").write_text("")
        (package / "migrations.json").write_text(fixture_text, encoding="utf-8")
        monkeypatch.syspath_prepend(str(tmp_path))

        migrations = load_migrations(
            PackageResourceSource("blog_app_migrations", "migrations.json")
        )

        assert migrations.latest_name == "20240406_035726416_tags"

    def test_dump_reproduces_file(
        self, tmp_path: Path, fixture_text: str, blog_migrations: MigrationSet
    ) -> None:
        """Test that writing a loaded set reproduces the original file."""
        target = tmp_path / "migrations.json"

        dump_migrations(blog_migrations, target)

        assert target.read_text(encoding="utf-8") == fixture_text.strip() + "\n"
