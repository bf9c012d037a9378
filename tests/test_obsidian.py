"""
Tests for Obsidian note discovery and line patching

Run with: pytest tests/
"""

import pytest

from integrations.obsidian import ObsidianIntegration, apply_updates, find_task_lines


class TestApplyUpdates:
    """Test suite for in-place line rewriting"""

    def test_patch_lines(self, tmp_path):
        note = tmp_path / 'note.md'
        note.write_text('line1\n  - [ ] line2\nline3\nline4\n', encoding='utf-8')

        apply_updates(note, [(1, '- [x] updated2'), (3, 'updated4')])

        assert note.read_text(encoding='utf-8') == 'line1\n  - [x] updated2\nline3\nupdated4\n'
        assert not (tmp_path / 'note.md.temp').exists()

    def test_crlf_preserved(self, tmp_path):
        note = tmp_path / 'note.md'
        note.write_bytes(b'- [ ] a\r\n- [ ] b\r\n')

        apply_updates(note, [(0, '- [x] a')])

        assert note.read_bytes() == b'- [x] a\r\n- [ ] b\r\n'

    def test_last_line_without_newline(self, tmp_path):
        note = tmp_path / 'note.md'
        note.write_text('intro\n\t- [ ] last', encoding='utf-8')

        apply_updates(note, [(1, '- [-] last')])

        assert note.read_text(encoding='utf-8') == 'intro\n\t- [-] last'

    def test_out_of_range_leaves_file(self, tmp_path):
        note = tmp_path / 'note.md'
        note.write_text('- [ ] only\n', encoding='utf-8')

        with pytest.raises(IndexError):
            apply_updates(note, [(0, '- [x] only'), (5, 'nope')])

        assert note.read_text(encoding='utf-8') == '- [ ] only\n'
        assert not (tmp_path / 'note.md.temp').exists()

    def test_stale_temp_removed(self, tmp_path):
        note = tmp_path / 'note.md'
        note.write_text('- [ ] task\n', encoding='utf-8')
        (tmp_path / 'note.md.temp').write_text('leftover', encoding='utf-8')

        apply_updates(note, [(0, '- [x] task')])

        assert note.read_text(encoding='utf-8') == '- [x] task\n'
        assert not (tmp_path / 'note.md.temp').exists()

    def test_no_updates_is_noop(self, tmp_path):
        note = tmp_path / 'note.md'
        note.write_text('text\n', encoding='utf-8')
        apply_updates(note, [])
        assert note.read_text(encoding='utf-8') == 'text\n'

    def test_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            apply_updates(tmp_path / 'gone.md', [(0, 'x')])


class TestObsidianIntegration:
    """Test suite for note discovery"""

    def test_find_task_files_in_vault(self, tmp_path):
        (tmp_path / 'b.md').write_text('', encoding='utf-8')
        (tmp_path / 'sub').mkdir()
        (tmp_path / 'sub' / 'a.md').write_text('', encoding='utf-8')
        (tmp_path / 'sub' / 'image.png').write_bytes(b'')
        (tmp_path / '.obsidian').mkdir()
        (tmp_path / '.obsidian' / 'workspace.md').write_text('', encoding='utf-8')

        obsidian = ObsidianIntegration({'vault_path': tmp_path})

        assert obsidian.find_task_files() == [tmp_path / 'b.md', tmp_path / 'sub' / 'a.md']
        assert obsidian.vault_name == tmp_path.name

    def test_single_file(self, tmp_path):
        note = tmp_path / 'note.md'
        note.write_text('', encoding='utf-8')
        obsidian = ObsidianIntegration({'file_path': note})
        assert obsidian.find_task_files() == [note]
        assert obsidian.vault_name is None

    def test_missing_vault(self, tmp_path):
        assert ObsidianIntegration({'vault_path': tmp_path / 'nope'}).find_task_files() == []

    def test_read_task_lines(self, tmp_path):
        note = tmp_path / 'note.md'
        note.write_text('# Heading\n- [ ] one\nprose\n    - [x] two\n- plain bullet\n', encoding='utf-8')

        lines = ObsidianIntegration({'file_path': note}).read_task_lines(note)

        assert lines == [(1, '- [ ] one'), (3, '    - [x] two')]

    def test_find_task_lines_keeps_unknown_markers(self):
        assert list(find_task_lines(['- [/] half done', 'text'])) == [(0, '- [/] half done')]
