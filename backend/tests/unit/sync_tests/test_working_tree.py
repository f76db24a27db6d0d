"""
Unit tests for git change-listing parsers.
"""

from gitsync.working_tree import (
    ADDED,
    DELETED,
    MODIFIED,
    OTHER,
    RENAMED,
    UNTRACKED,
    FileChange,
    parse_name_status,
    parse_porcelain,
)


class TestParsePorcelain:

    def test_mixed_status(self):
        output = " M README.md\nA  src/app.py\n D old.txt\n?? notes.txt\n"

        changes = parse_porcelain(output)

        assert [(c.change, c.path) for c in changes] == [
            (MODIFIED, 'README.md'),
            (ADDED, 'src/app.py'),
            (DELETED, 'old.txt'),
            (UNTRACKED, 'notes.txt'),
        ]

    def test_rename(self):
        changes = parse_porcelain("R  docs/a.md -> docs/b.md\n")

        assert changes == [FileChange(path='docs/b.md', change=RENAMED, original_path='docs/a.md')]
        assert changes[0].describe() == "renamed: docs/a.md -> docs/b.md"

    def test_leading_space_is_kept(self):
        """' M' must not be stripped into 'M' + shifted path"""
        changes = parse_porcelain(" M a.txt")
        assert changes[0].path == 'a.txt'

    def test_empty_output(self):
        assert parse_porcelain('') == []
        assert parse_porcelain(None) == []

    def test_unknown_code(self):
        assert parse_porcelain("UU conflict.txt")[0].change == OTHER


class TestParseNameStatus:

    def test_simple_entries(self):
        changes = parse_name_status("M\tREADME.md\nA\tnew.py\nD\tgone.py\n")

        assert [c.describe() for c in changes] == [
            "modified: README.md",
            "added: new.py",
            "deleted: gone.py",
        ]

    def test_rename_with_score(self):
        changes = parse_name_status("R100\told.py\tnew.py\n")

        assert changes == [FileChange(path='new.py', change=RENAMED, original_path='old.py')]

    def test_copy_with_score(self):
        changes = parse_name_status("C075\tbase.py\tcopy.py\n")

        assert changes[0].path == 'copy.py'
        assert changes[0].original_path == 'base.py'

    def test_skips_blank_and_malformed_lines(self):
        assert parse_name_status("\n  \nM\n") == []
