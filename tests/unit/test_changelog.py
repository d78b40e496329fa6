"""Tests for changelog loading and changeset checksums."""

import pytest

from student_service.database.migrations import (
    ChangelogStore,
    ChangesetIdentity,
    MalformedChangelog,
)
from student_service.database.migrations.changeset import compute_checksum
from student_service.database.migrations.operations import CreateTable, RawSql


def _changeset(changeset_id, author="tester", sql="SELECT 1", **extra):
    body = {"id": changeset_id, "author": author, "changes": [{"sql": sql}]}
    body.update(extra)
    return {"changeSet": body}


class TestChangelogOrdering:
    """Test that includes are expanded in place and in order."""

    def test_single_file(self, changelog_root, write_changelog):
        write_changelog("master.yaml", [_changeset("a"), _changeset("b")])

        changesets = ChangelogStore(changelog_root, "master.yaml").load()

        assert [c.identity for c in changesets] == [
            ChangesetIdentity("a", "tester", "master.yaml"),
            ChangesetIdentity("b", "tester", "master.yaml"),
        ]

    def test_include_expanded_in_place(self, changelog_root, write_changelog):
        write_changelog("changes/second.yaml", [_changeset("second")])
        write_changelog(
            "master.yaml",
            [
                _changeset("first"),
                {"include": {"file": "changes/second.yaml"}},
                _changeset("third"),
            ],
        )

        changesets = ChangelogStore(changelog_root, "master.yaml").load()

        assert [c.identity.id for c in changesets] == ["first", "second", "third"]
        assert changesets[1].identity.filename == "changes/second.yaml"

    def test_include_relative_to_changelog_file(self, changelog_root, write_changelog):
        write_changelog("nested/child.yaml", [_changeset("child")])
        write_changelog(
            "nested/parent.yaml",
            [{"include": {"file": "child.yaml", "relativeToChangelogFile": True}}],
        )
        write_changelog("master.yaml", [{"include": {"file": "nested/parent.yaml"}}])

        changesets = ChangelogStore(changelog_root, "master.yaml").load()

        assert [c.identity.filename for c in changesets] == ["nested/child.yaml"]

    def test_include_all_in_lexical_order(self, changelog_root, write_changelog):
        write_changelog("changes/010-b.yaml", [_changeset("b")])
        write_changelog("changes/002-a.yml", [_changeset("a")])
        write_changelog("changes/100-c.yaml", [_changeset("c")])
        (changelog_root / "changes" / "README.txt").write_text("not a changelog")
        write_changelog("master.yaml", [{"includeAll": {"path": "changes"}}])

        changesets = ChangelogStore(changelog_root, "master.yaml").load()

        assert [c.identity.id for c in changesets] == ["a", "b", "c"]

    def test_same_id_in_different_files_is_distinct(self, changelog_root, write_changelog):
        write_changelog("other.yaml", [_changeset("same")])
        write_changelog("master.yaml", [_changeset("same"), {"include": {"file": "other.yaml"}}])

        changesets = ChangelogStore(changelog_root, "master.yaml").load()

        assert len({c.identity for c in changesets}) == 2

    def test_iteration_is_lazy(self, changelog_root, write_changelog):
        write_changelog("master.yaml", [_changeset("a"), {"include": {"file": "missing.yaml"}}])

        iterator = ChangelogStore(changelog_root, "master.yaml").iter_changesets()

        assert next(iterator).identity.id == "a"
        with pytest.raises(MalformedChangelog, match="not found"):
            next(iterator)

    def test_empty_file(self, changelog_root):
        (changelog_root / "master.yaml").write_text("")

        assert ChangelogStore(changelog_root, "master.yaml").load() == []


class TestMalformedChangelog:
    """Test rejection of invalid changelogs."""

    def test_include_cycle(self, changelog_root, write_changelog):
        write_changelog("a.yaml", [{"include": {"file": "b.yaml"}}])
        write_changelog("b.yaml", [{"include": {"file": "a.yaml"}}])

        with pytest.raises(
            MalformedChangelog, match="Include cycle detected: a.yaml -> b.yaml -> a.yaml"
        ):
            ChangelogStore(changelog_root, "a.yaml").load()

    def test_self_include(self, changelog_root, write_changelog):
        write_changelog("master.yaml", [{"include": {"file": "master.yaml"}}])

        with pytest.raises(MalformedChangelog, match="Include cycle"):
            ChangelogStore(changelog_root, "master.yaml").load()

    def test_duplicate_identity(self, changelog_root, write_changelog):
        write_changelog("master.yaml", [_changeset("a"), _changeset("a", sql="SELECT 2")])

        with pytest.raises(MalformedChangelog, match="Duplicate changeset identity"):
            ChangelogStore(changelog_root, "master.yaml").load()

    def test_same_file_included_twice_is_duplicate(self, changelog_root, write_changelog):
        write_changelog("child.yaml", [_changeset("child")])
        write_changelog(
            "master.yaml",
            [{"include": {"file": "child.yaml"}}, {"include": {"file": "child.yaml"}}],
        )

        with pytest.raises(MalformedChangelog, match="Duplicate"):
            ChangelogStore(changelog_root, "master.yaml").load()

    def test_missing_master(self, changelog_root):
        with pytest.raises(MalformedChangelog, match="not found") as exc_info:
            ChangelogStore(changelog_root, "master.yaml").load()

        assert exc_info.value.source == "master.yaml"

    def test_invalid_yaml(self, changelog_root):
        (changelog_root / "master.yaml").write_text("databaseChangeLog: [unclosed")

        with pytest.raises(MalformedChangelog, match="Invalid YAML"):
            ChangelogStore(changelog_root, "master.yaml").load()

    def test_missing_root_key(self, changelog_root):
        (changelog_root / "master.yaml").write_text("changes: []\n")

        with pytest.raises(MalformedChangelog, match="databaseChangeLog"):
            ChangelogStore(changelog_root, "master.yaml").load()

    def test_unknown_entry(self, changelog_root, write_changelog):
        write_changelog("master.yaml", [{"preConditions": {}}])

        with pytest.raises(MalformedChangelog, match="Unknown changelog entry 'preConditions'"):
            ChangelogStore(changelog_root, "master.yaml").load()

    def test_missing_author(self, changelog_root, write_changelog):
        write_changelog(
            "master.yaml", [{"changeSet": {"id": "a", "changes": [{"sql": "SELECT 1"}]}}]
        )

        with pytest.raises(MalformedChangelog, match="requires 'author'"):
            ChangelogStore(changelog_root, "master.yaml").load()

    def test_missing_changes(self, changelog_root, write_changelog):
        write_changelog("master.yaml", [{"changeSet": {"id": "a", "author": "tester"}}])

        with pytest.raises(MalformedChangelog, match="non-empty 'changes'"):
            ChangelogStore(changelog_root, "master.yaml").load()

    def test_error_names_the_changeset(self, changelog_root, write_changelog):
        write_changelog(
            "master.yaml",
            [{"changeSet": {"id": "bad", "author": "tester", "changes": [{"explode": {}}]}}],
        )

        with pytest.raises(MalformedChangelog) as exc_info:
            ChangelogStore(changelog_root, "master.yaml").load()

        assert exc_info.value.source == "master.yaml::bad"

    def test_include_all_missing_directory(self, changelog_root, write_changelog):
        write_changelog("master.yaml", [{"includeAll": {"path": "nowhere"}}])

        with pytest.raises(MalformedChangelog, match="includeAll directory not found"):
            ChangelogStore(changelog_root, "master.yaml").load()


class TestChangesetAttributes:
    """Test parsed changeset attributes."""

    def test_operations_rollback_tag_and_comment(
        self, changelog_root, write_changelog, create_students
    ):
        create_students["changeSet"]["tag"] = "v1.0"
        create_students["changeSet"]["comment"] = "Initial table"
        write_changelog("master.yaml", [create_students])

        changeset = ChangelogStore(changelog_root, "master.yaml").load()[0]

        assert isinstance(changeset.operations[0], CreateTable)
        assert changeset.has_rollback
        assert changeset.tag == "v1.0"
        assert changeset.comment == "Initial table"
        assert changeset.description == "createTable tableName=students"

    def test_rollback_as_sql_string(self, changelog_root, write_changelog):
        write_changelog("master.yaml", [_changeset("a", rollback="DROP TABLE a")])

        changeset = ChangelogStore(changelog_root, "master.yaml").load()[0]

        assert isinstance(changeset.rollback[0], RawSql)

    def test_no_rollback(self, changelog_root, write_changelog):
        write_changelog("master.yaml", [_changeset("a")])

        changeset = ChangelogStore(changelog_root, "master.yaml").load()[0]

        assert changeset.rollback is None
        assert not changeset.has_rollback

    def test_numeric_id_kept_as_string(self, changelog_root, write_changelog):
        write_changelog("master.yaml", [_changeset(1)])

        changeset = ChangelogStore(changelog_root, "master.yaml").load()[0]

        assert changeset.identity.id == "1"


class TestChecksums:
    """Test checksum computation and acceptance."""

    def test_format(self):
        checksum = compute_checksum([{"sql": "SELECT 1"}])

        assert checksum.startswith("1:")
        assert len(checksum) == 34

    def test_independent_of_key_order(self):
        first = [{"dropColumn": {"tableName": "t", "columnName": "c"}}]
        second = [{"dropColumn": {"columnName": "c", "tableName": "t"}}]

        assert compute_checksum(first) == compute_checksum(second)

    def test_changes_with_content(self):
        assert compute_checksum([{"sql": "SELECT 1"}]) != compute_checksum([{"sql": "SELECT 2"}])

    def test_rollback_and_comment_do_not_affect_checksum(self, changelog_root, write_changelog):
        write_changelog(
            "master.yaml",
            [
                _changeset("a"),
                _changeset("b", comment="note", rollback=[{"sql": "SELECT 0"}]),
            ],
        )

        first, second = ChangelogStore(changelog_root, "master.yaml").load()

        assert first.checksum == second.checksum

    def test_stable_across_loads(self, changelog_root, write_changelog, create_students):
        write_changelog("master.yaml", [create_students])
        store = ChangelogStore(changelog_root, "master.yaml")

        assert store.load()[0].checksum == store.load()[0].checksum

    def test_accepts_matching_or_missing_checksum(self, changelog_root, write_changelog):
        write_changelog("master.yaml", [_changeset("a")])
        changeset = ChangelogStore(changelog_root, "master.yaml").load()[0]

        assert changeset.accepts_checksum(changeset.checksum)
        assert changeset.accepts_checksum(None)
        assert not changeset.accepts_checksum("1:deadbeef")

    def test_valid_checksum_list(self, changelog_root, write_changelog):
        write_changelog("master.yaml", [_changeset("a", validCheckSum=["1:deadbeef"])])
        changeset = ChangelogStore(changelog_root, "master.yaml").load()[0]

        assert changeset.accepts_checksum("1:deadbeef")
        assert not changeset.accepts_checksum("1:cafebabe")

    def test_valid_checksum_any(self, changelog_root, write_changelog):
        write_changelog("master.yaml", [_changeset("a", validCheckSum="ANY")])
        changeset = ChangelogStore(changelog_root, "master.yaml").load()[0]

        assert changeset.accepts_checksum("1:anything")
