#!/usr/bin/env python3
from __future__ import annotations

import logging
from dataclasses import dataclass

from sequence_parser import LoopRegion, Message, Note, NotePosition, Participant, SequenceDiagram

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LayoutSettings:
    base_x: float = 80.0
    header_y: float = 20.0
    spacing: float = 180.0
    header_w: float = 100.0
    header_h: float = 50.0
    lifeline_gap: float = 10.0
    lifeline_w: float = 2.0
    lifeline_h: float = 300.0
    message_top: float = 110.0
    message_step: float = 60.0
    loop_endpoint_margin: float = 20.0
    loop_pad_x: float = 20.0
    loop_pad_top: float = 30.0
    loop_pad_bottom: float = 70.0
    loop_nest_inset: float = 10.0
    note_gap: float = 20.0
    note_step: float = 60.0
    note_h: float = 40.0
    side_note_offset: float = 110.0
    side_note_w: float = 150.0

    def column_x(self, index: int) -> float:
        return self.base_x + index * self.spacing

    def column_center(self, index: int) -> float:
        return self.column_x(index) + self.header_w / 2.0

    def message_y(self, index: int) -> float:
        return self.message_top + index * self.message_step


@dataclass(frozen=True, slots=True)
class Bounds:
    x: float
    y: float
    w: float
    h: float

    @property
    def right(self) -> float:
        return self.x + self.w

    @property
    def bottom(self) -> float:
        return self.y + self.h


@dataclass(frozen=True, slots=True)
class ParticipantShape:
    cell_id: str
    participant: Participant
    header: Bounds
    lifeline: Bounds


@dataclass(frozen=True, slots=True)
class MessageShape:
    cell_id: str
    message: Message
    source: tuple[float, float]
    target: tuple[float, float]


@dataclass(frozen=True, slots=True)
class LoopShape:
    cell_id: str
    loop: LoopRegion
    frame: Bounds


@dataclass(frozen=True, slots=True)
class NoteShape:
    cell_id: str
    note: Note
    frame: Bounds


@dataclass(frozen=True, slots=True)
class SequenceLayout:
    participants: tuple[ParticipantShape, ...]
    loops: tuple[LoopShape, ...]
    messages: tuple[MessageShape, ...]
    notes: tuple[NoteShape, ...]

    def bounds(self) -> Bounds:
        boxes: list[Bounds] = []
        for p in self.participants:
            boxes.extend([p.header, p.lifeline])
        boxes.extend(loop.frame for loop in self.loops)
        boxes.extend(note.frame for note in self.notes)
        for m in self.messages:
            left = min(m.source[0], m.target[0])
            boxes.append(Bounds(left, m.source[1], abs(m.target[0] - m.source[0]), 0.0))
        if not boxes:
            return Bounds(0.0, 0.0, 0.0, 0.0)
        left = min(b.x for b in boxes)
        top = min(b.y for b in boxes)
        right = max(b.right for b in boxes)
        bottom = max(b.bottom for b in boxes)
        return Bounds(left, top, right - left, bottom - top)


def layout_participants(diagram: SequenceDiagram, settings: LayoutSettings) -> list[ParticipantShape]:
    shapes: list[ParticipantShape] = []
    for i, p in enumerate(diagram.participants):
        x = settings.column_x(i)
        header = Bounds(x, settings.header_y, settings.header_w, settings.header_h)
        lifeline = Bounds(
            settings.column_center(i) - settings.lifeline_w / 2.0,
            header.bottom + settings.lifeline_gap,
            settings.lifeline_w,
            settings.lifeline_h,
        )
        shapes.append(ParticipantShape(cell_id=f"p{i}", participant=p, header=header, lifeline=lifeline))
    return shapes


def layout_messages(diagram: SequenceDiagram, settings: LayoutSettings) -> list[MessageShape]:
    shapes: list[MessageShape] = []
    for i, msg in enumerate(diagram.messages):
        from_idx = diagram.participant_index(msg.from_id)
        to_idx = diagram.participant_index(msg.to_id)
        if from_idx is None or to_idx is None:
            logger.warning("message %d (%s%s%s) references an undeclared participant, skipped", i, msg.from_id, msg.arrow.value, msg.to_id)
            continue
        y = settings.message_y(i)
        shapes.append(
            MessageShape(
                cell_id=f"msg{i}",
                message=msg,
                source=(settings.column_center(from_idx), y),
                target=(settings.column_center(to_idx), y),
            )
        )
    return shapes


def loop_frame(diagram: SequenceDiagram, loop: LoopRegion, settings: LayoutSettings) -> Bounds | None:
    if loop.is_degenerate:
        return None

    centers: list[float] = []
    for msg in loop.messages:
        from_idx = diagram.participant_index(msg.from_id)
        to_idx = diagram.participant_index(msg.to_id)
        if from_idx is None or to_idx is None:
            continue
        centers.extend([settings.column_center(from_idx), settings.column_center(to_idx)])
    if not centers:
        return None

    inset = loop.depth * settings.loop_nest_inset
    left = min(centers) - settings.loop_endpoint_margin - settings.loop_pad_x + inset
    right = max(centers) + settings.loop_endpoint_margin + settings.loop_pad_x - inset
    top = settings.message_y(loop.start_index) - settings.loop_pad_top + inset
    bottom = settings.message_y(loop.end_index) + settings.loop_pad_bottom - inset
    # Deep nesting must not invert the frame.
    right = max(right, left + settings.loop_nest_inset)
    bottom = max(bottom, top + settings.loop_nest_inset)
    return Bounds(left, top, right - left, bottom - top)


def layout_loops(diagram: SequenceDiagram, settings: LayoutSettings) -> list[LoopShape]:
    shapes: list[LoopShape] = []
    for i, loop in enumerate(diagram.loops):
        frame = loop_frame(diagram, loop, settings)
        if frame is None:
            logger.debug("loop %d (%r) has no drawable messages, skipped", i, loop.label)
            continue
        shapes.append(LoopShape(cell_id=f"loop{i}", loop=loop, frame=frame))
    # Outer frames first so nested frames stay visible on top of them.
    shapes.sort(key=lambda shape: shape.loop.depth)
    return shapes


def note_extent(diagram: SequenceDiagram, note: Note, settings: LayoutSettings) -> tuple[float, float] | None:
    indices = [diagram.participant_index(pid) for pid in note.targets]
    if not indices or any(idx is None for idx in indices):
        return None
    resolved = [idx for idx in indices if idx is not None]

    if note.position is NotePosition.OVER:
        lo = min(resolved)
        hi = max(resolved)
        return settings.column_x(lo), (hi - lo) * settings.spacing + settings.header_w

    col_x = settings.column_x(resolved[0])
    if note.position is NotePosition.RIGHT_OF:
        return col_x + settings.side_note_offset, settings.side_note_w
    return col_x + settings.header_w - settings.side_note_offset - settings.side_note_w, settings.side_note_w


def layout_notes(diagram: SequenceDiagram, settings: LayoutSettings) -> list[NoteShape]:
    shapes: list[NoteShape] = []
    y = settings.message_y(len(diagram.messages)) + settings.note_gap
    for i, note in enumerate(diagram.notes):
        extent = note_extent(diagram, note, settings)
        if extent is None:
            logger.warning("note %d (%s %s) references an undeclared participant, skipped", i, note.position.value, ",".join(note.targets))
            continue
        x, w = extent
        shapes.append(NoteShape(cell_id=f"note{i}", note=note, frame=Bounds(x, y, w, settings.note_h)))
        y += settings.note_step
    return shapes


def layout_sequence(diagram: SequenceDiagram, settings: LayoutSettings | None = None) -> SequenceLayout:
    settings = settings or LayoutSettings()
    return SequenceLayout(
        participants=tuple(layout_participants(diagram, settings)),
        loops=tuple(layout_loops(diagram, settings)),
        messages=tuple(layout_messages(diagram, settings)),
        notes=tuple(layout_notes(diagram, settings)),
    )
