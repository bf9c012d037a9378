"""
Obsidian Integration

Finds task lines in an Obsidian vault (or a single note) and rewrites
lines in place via direct file access.
"""

import re
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

logger = logging.getLogger("TaskSync.Obsidian")

# Anything that looks like a checkbox; the parser decides if it is a task
TASK_LINE_RE = re.compile(r'^\s*- \[.\] ')

LEADING_WHITESPACE_RE = re.compile(r'^\s*')

NOTE_SUFFIX = '.md'
TEMP_SUFFIX = '.temp'


class LineUpdate(NamedTuple):
    """Replacement text for one 0-based line of a file"""
    line: int
    text: str


class ObsidianIntegration:
    """Integration with an Obsidian vault for task line discovery"""

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize Obsidian integration

        Args:
            config: Dict with 'vault_path' and/or 'file_path'
        """
        self.config = config
        self.logger = logger

        vault_path = config.get('vault_path')
        file_path = config.get('file_path')
        self.vault_path = Path(vault_path).expanduser() if vault_path else None
        self.file_path = Path(file_path).expanduser() if file_path else None

        if self.vault_path and not self.vault_path.is_dir():
            self.logger.warning(f"Obsidian vault not found: {self.vault_path}")
        if self.file_path and not self.file_path.exists():
            self.logger.warning(f"Note not found: {self.file_path}")

    @property
    def vault_name(self) -> Optional[str]:
        return self.vault_path.name if self.vault_path else None

    def find_task_files(self) -> List[Path]:
        """
        Get the notes to scan

        Returns:
            The configured file, or every note in the vault (hidden
            directories such as .obsidian and .trash are skipped)
        """
        if self.file_path:
            return [self.file_path]

        if not self.vault_path or not self.vault_path.is_dir():
            return []

        notes = []
        for path in self.vault_path.rglob(f'*{NOTE_SUFFIX}'):
            relative = path.relative_to(self.vault_path)
            if any(part.startswith('.') for part in relative.parts):
                continue
            if path.is_file():
                notes.append(path)

        notes.sort()
        self.logger.info(f"Found {len(notes)} notes in vault {self.vault_name}")
        return notes

    def read_task_lines(self, path: Path) -> List[Tuple[int, str]]:
        """
        Read candidate task lines from a note

        Returns:
            (0-based line index, line text without line ending) pairs
        """
        content = Path(path).read_text(encoding='utf-8')
        return list(find_task_lines(content.splitlines()))


def find_task_lines(lines: Iterable[str]) -> Iterable[Tuple[int, str]]:
    for index, line in enumerate(lines):
        if TASK_LINE_RE.match(line):
            yield index, line


def _line_ending(line: str) -> str:
    stripped = line.rstrip('\r\n')
    return line[len(stripped):]


def apply_updates(path: Path, updates: Iterable[Tuple[int, str]]) -> None:
    """
    Replace lines of a file, atomically

    All indices refer to the file as read once, before any update. Each
    replaced line keeps its leading whitespace and line ending; every other
    line is written back unchanged. The new content goes to a temporary
    file that replaces the original (remove, then rename).

    Args:
        path: File to patch
        updates: (0-based line index, new text without indentation) pairs

    Raises:
        IndexError: if an index is outside the file; nothing is written
        OSError: on any I/O failure; the original file is left as it was
    """
    path = Path(path)
    updates = [LineUpdate(*update) for update in updates]
    if not updates:
        return

    temp_path = path.with_name(path.name + TEMP_SUFFIX)
    if temp_path.exists():
        temp_path.unlink()

    with open(path, 'r', encoding='utf-8', newline='') as f:
        lines = f.read().splitlines(keepends=True)

    for update in updates:
        if not 0 <= update.line < len(lines):
            raise IndexError(f"Line {update.line} out of range for {path} ({len(lines)} lines)")

    replaced = list(lines)
    for update in updates:
        original = lines[update.line]
        indent = LEADING_WHITESPACE_RE.match(original.rstrip('\r\n')).group(0)
        replaced[update.line] = f"{indent}{update.text}{_line_ending(original)}"

    try:
        with open(temp_path, 'w', encoding='utf-8', newline='') as f:
            f.writelines(replaced)
    except OSError:
        if temp_path.exists():
            temp_path.unlink()
        raise

    path.unlink()
    temp_path.rename(path)

    logger.debug(f"Rewrote {len(updates)} lines in {path.name}")
