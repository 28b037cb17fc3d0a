# lotbot/core/formatter.py
"""
Outbound lot messages for operators.

A lot is rendered as a header block followed by one line per question.
Telegram rejects messages above 4096 characters, so the rendering is
split into chunks that each repeat the header and carry as many whole
lines as fit under ``max_length``.

Pure functions only; nothing here talks to the network or storage.
"""
from __future__ import annotations

import re
from datetime import datetime
from zoneinfo import ZoneInfo

from lotbot.core.domain import Lot, Snapshot

DEFAULT_MAX_LENGTH = 3800
LINE_SEPARATOR = "\n"
ANONYMOUS_AUTHOR = "Anônimo"

_WHITESPACE_RE = re.compile(r"\s+")


def format_date(value: datetime, tz_name: str = "America/Sao_Paulo") -> str:
    """``dd/mm/yyyy`` in the display timezone."""
    return value.astimezone(ZoneInfo(tz_name)).strftime("%d/%m/%Y")


def build_header(destination_label: str, date_label: str, total: int, lot_code: str | None = None) -> str:
    lines = [
        f"Data: {date_label}",
        f"Destino: {destination_label}",
    ]
    if lot_code:
        lines.append(f"Lote: {lot_code}")
    lines.extend([
        f"Total de perguntas: {total}",
        "",
        "Perguntas selecionadas:",
    ])
    return "\n".join(lines)


def format_question_line(item: Snapshot, index: int) -> str:
    """``"3. [#42] Maria: text with collapsed whitespace"`` (index is 0-based)."""
    author = (item.author or "").strip() or ANONYMOUS_AUTHOR
    text = _WHITESPACE_RE.sub(" ", item.text).strip()
    return f"{index + 1}. [#{item.id}] {author}: {text}"


def split_messages(header: str, lines: list[str], max_length: int = DEFAULT_MAX_LENGTH) -> list[str]:
    """
    Pack ``lines`` into the fewest chunks of ``header + "\\n" + body``.

    - Lines are never split across chunks and keep their order.
    - A line that cannot fit even alone with the header is cut to the
      remaining budget and sent as its own chunk; the rest of that line
      is dropped.
    - No chunk is longer than ``max_length``.

    Raises:
        ValueError: if the header leaves no room for any line content.
    """
    available = max_length - len(header) - len(LINE_SEPARATOR)
    if available <= 0:
        raise ValueError(
            f"Header ({len(header)} chars) does not fit in max_length={max_length}"
        )

    messages: list[str] = []
    body = ""

    for line in lines:
        candidate = f"{body}{LINE_SEPARATOR}{line}" if body else line
        if len(candidate) <= available:
            body = candidate
            continue

        if body:
            messages.append(f"{header}{LINE_SEPARATOR}{body}")
            body = ""

        if len(line) > available:
            messages.append(f"{header}{LINE_SEPARATOR}{line[:available]}")
            continue

        body = line

    if body:
        messages.append(f"{header}{LINE_SEPARATOR}{body}")

    return messages


def render_lot(
    lot: Lot,
    *,
    max_length: int = DEFAULT_MAX_LENGTH,
    tz_name: str = "America/Sao_Paulo",
) -> list[str]:
    """Render a lot into the chunks broadcast to operators."""
    header = build_header(
        destination_label=lot.destination.label,
        date_label=format_date(lot.created_at, tz_name),
        total=len(lot.items),
        lot_code=lot.lot_code,
    )
    lines = [format_question_line(item, i) for i, item in enumerate(lot.items)]
    return split_messages(header, lines, max_length)
