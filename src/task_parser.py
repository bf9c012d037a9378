"""
Task line parser

Turns one Obsidian task line into a TaskRecord and renders a TaskRecord
back into canonical text:

    - [x] Buy milk #errands 🔨 Home 📅 2025-05-19 ⏫ [[id: <uuid>|⚔️]]

Parsing happens in three stages:
1. Preamble: the checkbox marker gives the status
2. Task parts: identifier anchor removed, description split from metadata
3. Metadata stream: emoji markers decoded into typed events
"""

import re
import uuid
import logging
from enum import Enum
from datetime import date
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Set, Tuple

import regex

logger = logging.getLogger("TaskSync.Parser")

VARIATION_SELECTOR = '\ufe0f'


class Status(Enum):
    """Tri-state task status, valued by its checkbox marker"""
    PENDING = ' '
    COMPLETE = 'x'
    CANCELED = '-'


class Priority(Enum):
    """Task priority with its marker glyph and store code"""
    LOWEST = ('⏬', 'L')
    LOW = ('🔽', 'L')
    NORMAL = ('', None)
    MEDIUM = ('🔼', 'M')
    HIGH = ('⏫', 'H')
    HIGHEST = ('🔺', 'H')

    @property
    def glyph(self) -> str:
        return self.value[0]

    @property
    def code(self) -> Optional[str]:
        return self.value[1]


DATE_MARKERS = {
    '📅': 'due',
    '⏳': 'scheduled',
    '🛫': 'start',
    '➕': 'created',
    '✅': 'done',
    '❌': 'canceled',
}

PRIORITY_MARKERS = {p.glyph: p for p in Priority if p.glyph}

PROJECT_MARKER = '🔨'

# Recurrence, external id and blocked-by: recognized, not interpreted
RESERVED_MARKERS = ('🔁', '🆔', '⛔')

SIGNIFICANT_MARKERS = frozenset(
    list(DATE_MARKERS) + list(PRIORITY_MARKERS) + [PROJECT_MARKER] + list(RESERVED_MARKERS)
)

# Canonical rendering order of the date fields
DATE_FIELDS = ('due', 'scheduled', 'start', 'created', 'done', 'canceled')
DATE_GLYPHS = {name: glyph for glyph, name in DATE_MARKERS.items()}

ANCHOR_GLYPH = '\u2694\ufe0f'

PREAMBLE_RE = re.compile(r'^\s*- \[(?P<status>[x\- ])\] (?P<remaining>.*)$')
ANCHOR_RE = re.compile(r'\[\[(?:id|uuid): (?P<identifier>[^|\]]*)\|[^\]]*\]\]')
DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')

DATE_PAYLOAD_LENGTH = 11


# ==================== Grapheme Tokenizer ====================

def split_graphemes(text: str) -> List[str]:
    """Split text into user-perceived characters (extended grapheme clusters)"""
    return regex.findall(r'\X', text)


def canonical_marker(grapheme: str) -> str:
    """Strip the emoji variation selector so both encodings match one marker"""
    return grapheme.replace(VARIATION_SELECTOR, '')


def is_marker(grapheme: str) -> bool:
    return canonical_marker(grapheme) in SIGNIFICANT_MARKERS


class GraphemeCursor:
    """Forward-only cursor over a pre-split grapheme sequence"""

    def __init__(self, graphemes: List[str]):
        self._graphemes = graphemes
        self._index = 0

    def at_end(self) -> bool:
        return self._index >= len(self._graphemes)

    def peek(self) -> Optional[str]:
        if self.at_end():
            return None
        return self._graphemes[self._index]

    def advance(self) -> Optional[str]:
        grapheme = self.peek()
        if grapheme is not None:
            self._index += 1
        return grapheme

    def take(self, count: int) -> List[str]:
        """Consume up to `count` graphemes (fewer at the end of input)"""
        taken = self._graphemes[self._index:self._index + count]
        self._index += len(taken)
        return taken


# ==================== Task Record ====================

@dataclass
class TaskRecord:
    """One task line, independent of its textual or store-backed form"""
    identifier: Optional[uuid.UUID] = None
    status: Status = Status.PENDING
    description: str = ''
    tags: Set[str] = field(default_factory=set)
    due: Optional[date] = None
    scheduled: Optional[date] = None
    start: Optional[date] = None
    created: Optional[date] = None
    done: Optional[date] = None
    canceled: Optional[date] = None
    priority: Priority = Priority.NORMAL
    project: Optional[str] = None

    @property
    def end_date(self) -> Optional[date]:
        """Date that fills the store's single end slot, selected by status"""
        if self.status == Status.COMPLETE:
            return self.done
        if self.status == Status.CANCELED:
            return self.canceled
        return None

    def __str__(self) -> str:
        return render(self)


# ==================== Metadata Stream Parser ====================

@dataclass
class MetadataEvent:
    """
    One decoded metadata marker

    `field` is a TaskRecord attribute name. A failed decode carries `error`
    and no value.
    """
    field: str
    value: object = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class MetadataParser:
    """
    Decodes a metadata run into MetadataEvents, in source order

    Every iteration starts from the beginning of the run.
    """

    def __init__(self, metadata: str):
        self.metadata = metadata
        self._graphemes = split_graphemes(metadata)

    def __iter__(self) -> Iterator[MetadataEvent]:
        cursor = GraphemeCursor(self._graphemes)
        while not cursor.at_end():
            marker = canonical_marker(cursor.advance())

            if marker in DATE_MARKERS:
                yield self._parse_date(DATE_MARKERS[marker], cursor)
            elif marker in PRIORITY_MARKERS:
                yield MetadataEvent('priority', PRIORITY_MARKERS[marker])
            elif marker == PROJECT_MARKER:
                project = self._capture_project(cursor)
                if project:
                    yield MetadataEvent('project', project)
            # anything else is insignificant here

    def _parse_date(self, field_name: str, cursor: GraphemeCursor) -> MetadataEvent:
        text = ''.join(cursor.take(DATE_PAYLOAD_LENGTH)).strip()
        if not DATE_RE.match(text):
            return MetadataEvent(field_name, error=f"Failed to parse {field_name} date: '{text}'")
        try:
            return MetadataEvent(field_name, date.fromisoformat(text))
        except ValueError as e:
            return MetadataEvent(field_name, error=f"Failed to parse {field_name} date: '{text}' ({e})")

    def _capture_project(self, cursor: GraphemeCursor) -> str:
        captured = []
        while not cursor.at_end() and not is_marker(cursor.peek()):
            captured.append(cursor.advance())
        return ''.join(captured).strip()


def apply_metadata(task: TaskRecord, events: Iterable[MetadataEvent]) -> TaskRecord:
    """Apply successful events in order (later markers win), log failures"""
    for event in events:
        if not event.ok:
            logger.warning(event.error)
            continue
        setattr(task, event.field, event.value)
    return task


# ==================== Line Grammar Parser ====================

def parse_preamble(text: str) -> Tuple[Optional[Status], str]:
    """
    Strip the checkbox preamble

    Returns:
        (status, remaining text); status is None and the text unchanged
        when the line is not a task
    """
    match = PREAMBLE_RE.match(text)
    if not match:
        return None, text
    return Status(match.group('status')), match.group('remaining')


def parse_identifier(text: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(text.strip())
    except ValueError:
        logger.warning(f"Failed to parse identifier: '{text}'")
        return None


def extract_task_parts(text: str) -> Tuple[str, Optional[str], Optional[uuid.UUID]]:
    """
    Split the text after the preamble into its parts

    The identifier anchor is removed wherever it appears, even when the
    identifier itself is malformed.

    Returns:
        (description with tags, metadata run or None, identifier or None)
    """
    identifier = None
    anchor = ANCHOR_RE.search(text)
    if anchor:
        identifier = parse_identifier(anchor.group('identifier'))
        text = (text[:anchor.start()] + text[anchor.end():]).strip()

    description = []
    metadata = None
    graphemes = split_graphemes(text)
    for index, grapheme in enumerate(graphemes):
        if is_marker(grapheme):
            metadata = ''.join(graphemes[index:]).strip()
            break
        description.append(grapheme)

    return ''.join(description).strip(), metadata, identifier


def parse_tags(text: str) -> Set[str]:
    """Collect `#tag` and `#parent/child` tags; each path segment is a tag"""
    tags = set()
    cursor = GraphemeCursor(split_graphemes(text))
    while not cursor.at_end():
        if cursor.advance() != '#':
            continue
        run = []
        while not cursor.at_end() and not cursor.peek().isspace():
            run.append(cursor.advance())
        tags.update(segment for segment in ''.join(run).split('/') if segment)
    return tags


def parse_line(text: str) -> Optional[TaskRecord]:
    """
    Parse one line into a TaskRecord

    Args:
        text: A single line of markdown (no trailing newline required)

    Returns:
        TaskRecord, or None if the line is not a task or has no description
    """
    status, remaining = parse_preamble(text.rstrip('\r\n'))
    if status is None:
        return None

    description, metadata, identifier = extract_task_parts(remaining)
    if not description:
        logger.debug(f"Task line has no description: '{text.strip()}'")
        return None

    task = TaskRecord(
        identifier=identifier,
        status=status,
        description=description,
        tags=parse_tags(description),
    )

    if metadata:
        apply_metadata(task, MetadataParser(metadata))

    return task


# ==================== Rendering ====================

def render_anchor(identifier: uuid.UUID) -> str:
    return f"[[id: {identifier}|{ANCHOR_GLYPH}]]"


def render(task: TaskRecord) -> str:
    """Render a TaskRecord as a canonical task line (no indentation)"""
    parts = [f"- [{task.status.value}] {task.description}"]

    if task.project:
        parts.append(f"{PROJECT_MARKER} {task.project}")

    for name in DATE_FIELDS:
        value = getattr(task, name)
        if value is not None:
            parts.append(f"{DATE_GLYPHS[name]} {value.isoformat()}")

    if task.priority != Priority.NORMAL:
        parts.append(task.priority.glyph)

    if task.identifier is not None:
        parts.append(render_anchor(task.identifier))

    return ' '.join(parts)
