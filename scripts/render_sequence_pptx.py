#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Sequence

from pptx import Presentation
from pptx.dml.color import RGBColor
from pptx.enum.dml import MSO_LINE_DASH_STYLE
from pptx.enum.shapes import MSO_CONNECTOR, MSO_SHAPE
from pptx.enum.text import MSO_AUTO_SIZE, MSO_VERTICAL_ANCHOR, PP_ALIGN
from pptx.oxml.ns import qn
from pptx.oxml.xmlchemy import OxmlElement
from pptx.util import Inches, Pt

from render_sequence_drawio import DEFAULT_SOURCE, configure_logging
from sequence_layout import Bounds, LayoutSettings, SequenceLayout, layout_sequence
from sequence_parser import ArrowKind, SequenceDiagram, parse_sequence_diagram

logger = logging.getLogger(__name__)

PX_PER_INCH = 96.0
SLIDE_MARGIN_IN = 0.30
MIN_SLIDE_WIDTH_IN = 10.0
MIN_SLIDE_HEIGHT_IN = 5.625
FONT_FAMILY = "Yu Gothic UI"

# (fill, stroke) pairs matching the draw.io palette.
PARTICIPANT_COLORS = ("DAE8FC", "6C8EBF")
LOOP_COLORS = ("E1D5E7", "9673A6")
NOTE_COLORS = ("FFF2CC", "D6B656")
LIFELINE_COLOR = "666666"
MESSAGE_COLOR = "334155"


def px_to_in(value: float) -> float:
    return value / PX_PER_INCH


def to_rgb(value: str) -> RGBColor:
    text = (value or "000000").strip().lstrip("#")
    if len(text) != 6:
        text = "000000"
    return RGBColor(int(text[0:2], 16), int(text[2:4], 16), int(text[4:6], 16))


def set_line_markers(connector: Any, start: str = "none", end: str = "none") -> None:
    ln = connector._element.spPr.get_or_add_ln()
    for child in list(ln):
        if child.tag in {qn("a:headEnd"), qn("a:tailEnd")}:
            ln.remove(child)

    if start != "none":
        head = OxmlElement("a:headEnd")
        head.set("type", start)
        ln.append(head)

    if end != "none":
        tail = OxmlElement("a:tailEnd")
        tail.set("type", end)
        ln.append(tail)


def apply_connector_style(connector: Any, *, color: str, dashed: bool, width_pt: float) -> None:
    connector.line.width = Pt(width_pt)
    connector.line.color.rgb = to_rgb(color)
    connector.line.dash_style = MSO_LINE_DASH_STYLE.DASH if dashed else MSO_LINE_DASH_STYLE.SOLID


def message_end_marker(arrow: ArrowKind) -> str:
    if arrow in {ArrowKind.SOLID_ARROW, ArrowKind.SOLID_OPEN_ARROW}:
        return "triangle"
    if arrow is ArrowKind.LOST_MESSAGE:
        return "none"
    return "arrow"


def draw_cross_marker(slide: Any, x: float, y: float, *, color: str, size: float = 0.06) -> None:
    for p0, p1 in [((x - size, y - size), (x + size, y + size)), ((x - size, y + size), (x + size, y - size))]:
        segment = slide.shapes.add_connector(
            MSO_CONNECTOR.STRAIGHT,
            Inches(p0[0]),
            Inches(p0[1]),
            Inches(p1[0]),
            Inches(p1[1]),
        )
        apply_connector_style(segment, color=color, dashed=False, width_pt=1.2)


def set_shape_text(
    shape: Any,
    text: str,
    *,
    font_size: float,
    bold: bool = False,
    align: PP_ALIGN = PP_ALIGN.CENTER,
    vertical: MSO_VERTICAL_ANCHOR = MSO_VERTICAL_ANCHOR.MIDDLE,
) -> None:
    tf = shape.text_frame
    tf.clear()
    tf.word_wrap = True
    tf.auto_size = MSO_AUTO_SIZE.NONE
    tf.vertical_anchor = vertical
    tf.margin_left = Inches(0.05)
    tf.margin_right = Inches(0.05)
    tf.margin_top = Inches(0.03)
    tf.margin_bottom = Inches(0.03)
    p = tf.paragraphs[0]
    p.alignment = align
    run = p.add_run()
    run.text = text
    run.font.name = FONT_FAMILY
    run.font.size = Pt(font_size)
    run.font.bold = bold
    run.font.color.rgb = to_rgb("0F172A")


def add_box(slide: Any, kind: int, bounds: Bounds, offset: tuple[float, float], colors: tuple[str, str]) -> Any:
    ox, oy = offset
    shape = slide.shapes.add_shape(
        kind,
        Inches(px_to_in(bounds.x) + ox),
        Inches(px_to_in(bounds.y) + oy),
        Inches(max(0.05, px_to_in(bounds.w))),
        Inches(max(0.05, px_to_in(bounds.h))),
    )
    fill, stroke = colors
    shape.fill.solid()
    shape.fill.fore_color.rgb = to_rgb(fill)
    shape.line.color.rgb = to_rgb(stroke)
    shape.line.width = Pt(1.0)
    return shape


def slide_geometry(layout: SequenceLayout) -> tuple[float, float, tuple[float, float]]:
    bounds = layout.bounds()
    width = max(MIN_SLIDE_WIDTH_IN, px_to_in(bounds.w) + SLIDE_MARGIN_IN * 2.0)
    height = max(MIN_SLIDE_HEIGHT_IN, px_to_in(bounds.h) + SLIDE_MARGIN_IN * 2.0)
    offset = (SLIDE_MARGIN_IN - px_to_in(bounds.x), SLIDE_MARGIN_IN - px_to_in(bounds.y))
    return width, height, offset


def draw_layout(slide: Any, layout: SequenceLayout, offset: tuple[float, float]) -> None:
    ox, oy = offset

    for shape in layout.participants:
        header = add_box(slide, MSO_SHAPE.RECTANGLE, shape.header, offset, PARTICIPANT_COLORS)
        set_shape_text(header, shape.participant.label, font_size=10.0, bold=True)

        lifeline_x = px_to_in(shape.lifeline.x + shape.lifeline.w / 2.0) + ox
        lifeline = slide.shapes.add_connector(
            MSO_CONNECTOR.STRAIGHT,
            Inches(lifeline_x),
            Inches(px_to_in(shape.lifeline.y) + oy),
            Inches(lifeline_x),
            Inches(px_to_in(shape.lifeline.bottom) + oy),
        )
        apply_connector_style(lifeline, color=LIFELINE_COLOR, dashed=True, width_pt=1.0)

    # Draw loop frames before messages.
    for shape in layout.loops:
        frame = add_box(slide, MSO_SHAPE.ROUNDED_RECTANGLE, shape.frame, offset, LOOP_COLORS)
        set_shape_text(
            frame,
            shape.loop.label,
            font_size=8.5,
            bold=True,
            align=PP_ALIGN.LEFT,
            vertical=MSO_VERTICAL_ANCHOR.TOP,
        )

    for shape in layout.messages:
        arrow = shape.message.arrow
        x0, y0 = px_to_in(shape.source[0]) + ox, px_to_in(shape.source[1]) + oy
        x1, y1 = px_to_in(shape.target[0]) + ox, px_to_in(shape.target[1]) + oy
        connector = slide.shapes.add_connector(MSO_CONNECTOR.STRAIGHT, Inches(x0), Inches(y0), Inches(x1), Inches(y1))
        apply_connector_style(connector, color=MESSAGE_COLOR, dashed=arrow.dashed, width_pt=1.2)
        set_line_markers(connector, end=message_end_marker(arrow))
        if arrow is ArrowKind.LOST_MESSAGE:
            draw_cross_marker(slide, x1, y1, color=MESSAGE_COLOR)

        if shape.message.text:
            label_w = max(0.8, abs(x1 - x0))
            label = slide.shapes.add_textbox(Inches(min(x0, x1)), Inches(y0 - 0.26), Inches(label_w), Inches(0.24))
            label.fill.background()
            label.line.fill.background()
            set_shape_text(label, shape.message.text, font_size=8.8, vertical=MSO_VERTICAL_ANCHOR.BOTTOM)

    for shape in layout.notes:
        note = add_box(slide, MSO_SHAPE.FOLDED_CORNER, shape.frame, offset, NOTE_COLORS)
        set_shape_text(note, shape.note.text, font_size=9.5)


def render_sequence_pptx(
    diagram: SequenceDiagram,
    output: Path,
    *,
    settings: LayoutSettings | None = None,
) -> Path:
    layout = layout_sequence(diagram, settings)
    slide_w, slide_h, offset = slide_geometry(layout)

    prs = Presentation()
    prs.slide_width = Inches(slide_w)
    prs.slide_height = Inches(slide_h)
    slide = prs.slides.add_slide(prs.slide_layouts[6])
    draw_layout(slide, layout, offset)

    output.parent.mkdir(parents=True, exist_ok=True)
    prs.save(str(output))
    return output


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Render Mermaid sequenceDiagram to PowerPoint using python-pptx")
    parser.add_argument("--source", type=Path, default=None)
    parser.add_argument("--output", type=Path, default=Path("output.pptx"))
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

    try:
        source_text = args.source.read_text(encoding="utf-8") if args.source else DEFAULT_SOURCE
    except OSError as exc:
        logger.error("cannot read %s: %s", args.source, exc)
        return 1

    model = parse_sequence_diagram(source_text)
    try:
        saved = render_sequence_pptx(model, args.output)
    except OSError as exc:
        logger.error("cannot write %s: %s", args.output, exc)
        return 1

    print(f"PowerPoint written to {saved}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
