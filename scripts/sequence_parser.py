#!/usr/bin/env python3
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class ArrowKind(Enum):
    SOLID_ARROW = "->>"
    SOLID_OPEN_ARROW = "->"
    DASHED_ARROW = "-->>"
    DASHED_OPEN_ARROW = "-->"
    LOST_MESSAGE = "-x"
    ASYNC_MESSAGE = "-)"

    @property
    def dashed(self) -> bool:
        return self.value.startswith("--")


class NotePosition(Enum):
    OVER = "over"
    RIGHT_OF = "right of"
    LEFT_OF = "left of"


# Longer tokens first so "-->>" is never read as "-->" or "->".
ARROW_TOKENS = sorted((kind.value for kind in ArrowKind), key=len, reverse=True)


@dataclass(frozen=True, slots=True)
class Participant:
    id: str
    label: str


@dataclass(frozen=True, slots=True)
class Message:
    from_id: str
    to_id: str
    text: str
    arrow: ArrowKind


@dataclass(frozen=True, slots=True)
class Note:
    position: NotePosition
    targets: tuple[str, ...]
    text: str


@dataclass(frozen=True, slots=True)
class LoopRegion:
    label: str
    messages: tuple[Message, ...]
    start_index: int
    end_index: int
    depth: int = 0

    @property
    def is_degenerate(self) -> bool:
        return self.start_index > self.end_index


@dataclass(frozen=True, slots=True)
class SequenceDiagram:
    participants: tuple[Participant, ...] = ()
    messages: tuple[Message, ...] = ()
    notes: tuple[Note, ...] = ()
    loops: tuple[LoopRegion, ...] = ()

    def participant_index(self, pid: str) -> int | None:
        for i, p in enumerate(self.participants):
            if p.id == pid:
                return i
        return None


@dataclass(slots=True)
class _OpenLoop:
    label: str
    start_index: int
    depth: int
    messages: list[Message] = field(default_factory=list)


@dataclass(slots=True)
class _ParseState:
    participants: list[Participant] = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)
    notes: list[Note] = field(default_factory=list)
    loops: list[LoopRegion] = field(default_factory=list)
    loop_stack: list[_OpenLoop] = field(default_factory=list)

    def close_loop(self) -> None:
        opened = self.loop_stack.pop()
        self.loops.append(
            LoopRegion(
                label=opened.label,
                messages=tuple(opened.messages),
                start_index=opened.start_index,
                end_index=len(self.messages) - 1,
                depth=opened.depth,
            )
        )


PARTICIPANT_RE = re.compile(r"^participant\s+(\w+)(?:\s+as\s+(.+))?$")
NOTE_RE = re.compile(r"^Note\s+(over|right of|left of)\s+([^:]+?)\s*:\s*(.*)$")
LOOP_START_RE = re.compile(r"^loop(?:\s+(.*))?$")
LOOP_END_RE = re.compile(r"^end$")
MESSAGE_RE = re.compile(
    r"^(\w+)\s*(" + "|".join(re.escape(token) for token in ARROW_TOKENS) + r")\s*(\w+)\s*:\s*(.*)$"
)
# Characters XML 1.0 cannot carry, even escaped.
XML_INVALID_CHARS_RE = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


def split_lines(text: str) -> list[str]:
    text = XML_INVALID_CHARS_RE.sub("", text)
    return [line.strip() for line in text.replace("\r\n", "\n").split("\n") if line.strip()]


def _on_participant(state: _ParseState, match: re.Match[str]) -> None:
    pid = match.group(1)
    label = (match.group(2) or "").strip() or pid
    if any(p.id == pid for p in state.participants):
        logger.debug("participant %r already declared, keeping first declaration", pid)
        return
    state.participants.append(Participant(id=pid, label=label))


def _on_note(state: _ParseState, match: re.Match[str]) -> None:
    position = NotePosition(match.group(1))
    raw_targets = match.group(2)
    if position is NotePosition.OVER:
        targets = tuple(part.strip() for part in raw_targets.split(",") if part.strip())
    else:
        targets = (raw_targets.strip(),)
    state.notes.append(Note(position=position, targets=targets, text=match.group(3).strip()))


def _on_loop_start(state: _ParseState, match: re.Match[str]) -> None:
    state.loop_stack.append(
        _OpenLoop(
            label=(match.group(1) or "").strip(),
            start_index=len(state.messages),
            depth=len(state.loop_stack),
        )
    )


def _on_loop_end(state: _ParseState, match: re.Match[str]) -> None:
    if not state.loop_stack:
        logger.debug("ignoring 'end' without an open loop")
        return
    state.close_loop()


def _on_message(state: _ParseState, match: re.Match[str]) -> None:
    message = Message(
        from_id=match.group(1),
        to_id=match.group(3),
        text=match.group(4).strip(),
        arrow=ArrowKind(match.group(2)),
    )
    state.messages.append(message)
    for opened in state.loop_stack:
        opened.messages.append(message)


LINE_RULES: tuple[tuple[re.Pattern[str], Callable[[_ParseState, re.Match[str]], None]], ...] = (
    (PARTICIPANT_RE, _on_participant),
    (NOTE_RE, _on_note),
    (LOOP_START_RE, _on_loop_start),
    (LOOP_END_RE, _on_loop_end),
    (MESSAGE_RE, _on_message),
)


def parse_sequence_diagram(source: str) -> SequenceDiagram:
    """Parse simplified Mermaid sequence-diagram text.

    Lines are matched against ``LINE_RULES`` in order and the first rule that
    matches handles the line. Anything else, including the optional
    ``sequenceDiagram`` header and ``%%`` comments, is ignored.
    Control characters that XML cannot represent are dropped from the text
    before matching. A loop still open at the end of the input is closed
    there, as if an ``end`` line followed the last statement.
    """
    state = _ParseState()

    for lineno, line in enumerate(split_lines(source), start=1):
        if line.startswith("%%"):
            continue
        for pattern, handler in LINE_RULES:
            match = pattern.match(line)
            if match:
                handler(state, match)
                break
        else:
            logger.debug("line %d ignored: %r", lineno, line)

    # Unterminated loops end with the last message.
    while state.loop_stack:
        logger.debug("closing unterminated loop %r", state.loop_stack[-1].label)
        state.close_loop()

    return SequenceDiagram(
        participants=tuple(state.participants),
        messages=tuple(state.messages),
        notes=tuple(state.notes),
        loops=tuple(state.loops),
    )
