"""Conversion between Gyazo image records and markdown note text.

A managed note is a front-matter block fenced by ``---`` lines followed by a
markdown body::

    ---
    category:
      - "[[Gyazo Images]]"
    gyazo_id: abc123
    ...
    ---

    # Title

The front-matter is owned by the sync engine and regenerated on every update.
The body belongs to the user once written; the only part the engine touches
afterwards is the OCR block, which is fenced by HTML comment markers so it can
be replaced in place instead of appended again.
"""

import re
from dataclasses import dataclass

from gyazobridge.core.errors import ContentFormatError
from gyazobridge.sources.gyazo.models import ImageRecord

SERVICE_NAME = "Gyazo"
CATEGORY_LINK = '"[[Gyazo Images]]"'
SOURCE_ID_FIELD = "gyazo_id"

OCR_HEADING = "## OCR Text"
DESCRIPTION_HEADING = "## Description"
PERMALINK_LABEL = "View on Gyazo"

_OCR_START = "<!-- gyazo-ocr:start -->"
_OCR_END = "<!-- gyazo-ocr:end -->"
_OCR_BLOCK_RE = re.compile(re.escape(_OCR_START) + r".*?" + re.escape(_OCR_END), re.DOTALL)

# Headings written by older releases without block markers
_LEGACY_OCR_HEADINGS = (OCR_HEADING, "## OCRテキスト")

_FRONT_MATTER_RE = re.compile(r"^---\n(.*?)\n---\n(.*)$", re.DOTALL)
_SOURCE_ID_RE = re.compile(rf"^{SOURCE_ID_FIELD}:\s*([A-Za-z0-9]+)", re.MULTILINE)

# Common file-system limit on a single path component
MAX_FILE_NAME_BYTES = 255

_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|]')


@dataclass(frozen=True)
class NoteParts:
    front_matter: str
    body: str


def sanitize_file_name(name: str) -> str:
    """Replace characters that are not allowed in file names with spaces."""
    return _UNSAFE_FILENAME_CHARS.sub(" ", name).strip()


def _truncate_utf8(text: str, max_bytes: int) -> str:
    """Cut ``text`` to at most ``max_bytes`` UTF-8 bytes on a character boundary."""
    if max_bytes <= 0:
        return ""
    return text.encode("utf-8")[:max_bytes].decode("utf-8", errors="ignore").rstrip()


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


def note_file_name(record: ImageRecord, suffix: str = "") -> str:
    """Derive the note file name for a brand-new note.

    ``Gyazo <YYYY-MM-DD>_<HHMMSS>[ <app>][ <title>]<suffix>.md`` with the image
    id in place of app and title when neither is known. Times are UTC.

    The name never exceeds :data:`MAX_FILE_NAME_BYTES` UTF-8 bytes: the title
    is shortened first, then the app. The date prefix, ``suffix`` and ``.md``
    are always kept.
    """
    created = record.created_datetime
    base = f"{SERVICE_NAME} {created:%Y-%m-%d}_{created:%H%M%S}"
    tail = f"{suffix}.md"

    app = sanitize_file_name(record.app) if record.app else ""
    title = sanitize_file_name(record.title) if record.title else ""

    room = MAX_FILE_NAME_BYTES - _byte_len(base) - _byte_len(tail)
    app = _truncate_utf8(app, room - 1)
    title_room = room - (_byte_len(app) + 1 if app else 0) - 1
    title = _truncate_utf8(title, title_room)

    if app:
        base += f" {app}"
    if title:
        base += f" {title}"
    if not app and not title:
        base += f" {record.image_id}"
    return f"{base}{tail}"


def note_relative_path(record: ImageRecord, save_directory: str, suffix: str = "") -> str:
    """Vault-relative path for a brand-new note."""
    return f"{save_directory.strip('/')}/{note_file_name(record, suffix)}"


def display_title(record: ImageRecord) -> str:
    return record.title or f"{SERVICE_NAME} Image {record.image_id}"


def _scalar(value: str) -> str:
    # Front-matter values are single-line
    return " ".join(str(value).split())


def render_front_matter(record: ImageRecord) -> str:
    """Render the front-matter lines (without the ``---`` fences)."""
    created_date = record.created_datetime.strftime("%Y-%m-%d")
    lines = [
        "category:",
        f"  - {CATEGORY_LINK}",
        f"{SOURCE_ID_FIELD}: {record.image_id}",
        f"created_at: {record.created_at}",
        f"created: {created_date}",
        f"type: {record.type}",
        f"permalink_url: {record.permalink_url}",
        f"url: {record.url}",
        f"thumb_url: {record.thumb_url}",
    ]

    if record.metadata:
        if record.metadata.app:
            lines.append(f"app: {_scalar(record.metadata.app)}")
        if record.metadata.title:
            lines.append(f"title: {_scalar(record.metadata.title)}")
        if record.metadata.url:
            lines.append(f"source_url: {_scalar(record.metadata.url)}")
        if record.metadata.desc:
            lines.append(f"description: {_scalar(record.metadata.desc)}")

    if record.ocr and record.ocr.locale:
        lines.append(f"ocr_locale: {record.ocr.locale}")

    return "\n".join(lines) + "\n"


def render_ocr_block(text: str) -> str:
    return f"{_OCR_START}\n{OCR_HEADING}\n{text.strip()}\n{_OCR_END}"


def _assemble(front_matter: str, body: str) -> str:
    return f"---\n{front_matter}---\n\n{body.strip()}\n"


def render_note(record: ImageRecord) -> str:
    """Render the full text of a new note for ``record``."""
    title = display_title(record)
    sections = [
        f"# {title}",
        f"![{title}]({record.url})",
        f"[{PERMALINK_LABEL}]({record.permalink_url})",
    ]
    if record.description:
        sections.append(f"{DESCRIPTION_HEADING}\n{record.description.strip()}")
    if record.ocr_text:
        sections.append(render_ocr_block(record.ocr_text))

    return _assemble(render_front_matter(record), "\n\n".join(sections))


def split_content(text: str) -> NoteParts:
    """Split note text into front-matter and body.

    Text without a leading ``---`` fenced block is treated as all body.
    """
    normalized = text.lstrip("\ufeff").replace("\r\n", "\n")
    match = _FRONT_MATTER_RE.match(normalized)
    if match:
        return NoteParts(front_matter=match.group(1), body=match.group(2).strip())
    return NoteParts(front_matter="", body=normalized.strip())


def parse_front_matter(front_matter: str) -> dict[str, str | list[str]]:
    """Parse the simple ``key: value`` front-matter written by :func:`render_front_matter`.

    Indented ``- item`` lines are collected as a list under the preceding key.
    """
    fields: dict[str, str | list[str]] = {}
    current_key: str | None = None
    for line in front_matter.splitlines():
        if not line.strip():
            continue
        if line.startswith((" ", "\t")) and current_key is not None:
            item = line.strip()
            if item.startswith("- "):
                existing = fields.get(current_key)
                values = existing if isinstance(existing, list) else []
                values.append(item[2:].strip())
                fields[current_key] = values
            continue
        key, sep, value = line.partition(":")
        if not sep:
            continue
        current_key = key.strip()
        fields[current_key] = value.strip()
    return fields


def _has_ocr_section(body: str) -> bool:
    if _OCR_BLOCK_RE.search(body):
        return True
    return any(
        line.strip() in _LEGACY_OCR_HEADINGS for line in body.splitlines()
    )


def merge_note(existing_text: str, record: ImageRecord) -> str:
    """Refresh an existing note from ``record``.

    The front-matter is rewritten from the record. The body is kept verbatim
    except for the managed OCR block: replaced when present, appended when the
    record has OCR text and the body has no OCR section yet.
    """
    parts = split_content(existing_text)
    body = parts.body

    ocr_text = record.ocr_text
    if ocr_text:
        block = render_ocr_block(ocr_text)
        if _OCR_BLOCK_RE.search(body):
            body = _OCR_BLOCK_RE.sub(lambda _match: block, body, count=1)
        elif not _has_ocr_section(body):
            body = f"{body}\n\n{block}" if body else block

    return _assemble(render_front_matter(record), body)


def extract_source_id(text: str) -> str | None:
    """Return the ``gyazo_id`` value of a note, or None for unmanaged notes."""
    match = _SOURCE_ID_RE.search(text.replace("\r\n", "\n"))
    return match.group(1) if match else None


def require_source_id(text: str) -> str:
    """Like :func:`extract_source_id` but raises for unmanaged notes.

    Raises:
        ContentFormatError: If the note has no ``gyazo_id`` marker
    """
    image_id = extract_source_id(text)
    if image_id is None:
        raise ContentFormatError("Note has no gyazo_id marker; it is not a Gyazo note")
    return image_id


def is_managed_note(text: str) -> bool:
    return extract_source_id(text) is not None
