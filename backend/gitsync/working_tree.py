"""
Parsers for git's machine-readable change listings.

- ``git status --porcelain``: two status columns, a space, then the path
  (``XY path`` or ``XY old -> new`` for renames)
- ``git diff --cached --name-status``: status letter(s), tab, path(s)
"""

from dataclasses import dataclass
from typing import List, Optional

MODIFIED = 'modified'
ADDED = 'added'
DELETED = 'deleted'
RENAMED = 'renamed'
UNTRACKED = 'untracked'
OTHER = 'other'


@dataclass(frozen=True)
class FileChange:
    path: str
    change: str
    original_path: Optional[str] = None

    def describe(self) -> str:
        if self.change == RENAMED and self.original_path:
            return f"{self.change}: {self.original_path} -> {self.path}"
        return f"{self.change}: {self.path}"


def _classify(code: str) -> str:
    if code == '??':
        return UNTRACKED
    if 'R' in code:
        return RENAMED
    if 'A' in code:
        return ADDED
    if 'D' in code:
        return DELETED
    if 'M' in code:
        return MODIFIED
    return OTHER


def parse_porcelain(output: str) -> List[FileChange]:
    """
    Parse ``git status --porcelain`` output.

    Lines are not stripped: a leading space is a meaningful (unmodified index) column.

    Examples:
        >>> parse_porcelain(" M README.md\\n?? notes.txt\\n")
        [FileChange(path='README.md', change='modified', original_path=None),
         FileChange(path='notes.txt', change='untracked', original_path=None)]
    """
    changes = []
    for line in (output or '').splitlines():
        if len(line) < 4:
            continue
        code, path = line[:2], line[3:]
        original = None
        change = _classify(code)
        if change == RENAMED and ' -> ' in path:
            original, path = path.split(' -> ', 1)
        changes.append(FileChange(path=path, change=change, original_path=original))
    return changes


def parse_name_status(output: str) -> List[FileChange]:
    """Parse ``git diff --cached --name-status`` output (R and C entries carry a score and two paths)."""
    changes = []
    for line in (output or '').splitlines():
        if not line.strip():
            continue
        parts = line.split('\t')
        code = parts[0].strip()
        if not code or len(parts) < 2:
            continue
        letter = code[0]
        if letter == 'R' and len(parts) >= 3:
            changes.append(FileChange(path=parts[2], change=RENAMED, original_path=parts[1]))
        elif letter == 'C' and len(parts) >= 3:
            changes.append(FileChange(path=parts[2], change=OTHER, original_path=parts[1]))
        else:
            changes.append(FileChange(path=parts[1], change=_classify(letter)))
    return changes
