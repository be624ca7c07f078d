#!/usr/bin/env python3
from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from lxml import etree

from sequence_layout import Bounds, LayoutSettings, SequenceLayout, layout_sequence
from sequence_parser import ArrowKind, SequenceDiagram, parse_sequence_diagram

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT = Path("output.drawio.xml")
DEFAULT_SOURCE = """sequenceDiagram
    participant A as Alice
    participant B as Bob
    A->>B: Hello
    B-->>A: Hi back"""

MIN_PAGE_WIDTH = 800
MIN_PAGE_HEIGHT = 400
PAGE_MARGIN = 40

PARTICIPANT_STYLE = "rounded=0;whiteSpace=wrap;html=1;fillColor=#dae8fc;strokeColor=#6c8ebf;fontStyle=1;"
LIFELINE_STYLE = (
    "html=1;points=[];perimeter=orthogonalPerimeter;outlineConnect=0;targetShapes=umlLifeline;"
    'portConstraint=eastwest;newEdgeStyle={"curved":0,"rounded":0};'
    "dashed=1;dashPattern=8 8;strokeWidth=1;strokeColor=#666666;"
)
LOOP_STYLE = "rounded=1;whiteSpace=wrap;html=1;fillColor=#e1d5e7;strokeColor=#9673a6;fontStyle=1;verticalAlign=top;align=left;spacingLeft=6;"
NOTE_STYLE = "rounded=1;whiteSpace=wrap;html=1;fillColor=#fff2cc;strokeColor=#d6b656;fontStyle=0;"

EDGE_STYLE_BASE = "html=1;verticalAlign=bottom;endArrow="
EDGE_STYLES = {
    ArrowKind.SOLID_ARROW: EDGE_STYLE_BASE + "block;curved=0;rounded=0;",
    ArrowKind.SOLID_OPEN_ARROW: EDGE_STYLE_BASE + "block;curved=0;rounded=0;",
    ArrowKind.DASHED_ARROW: EDGE_STYLE_BASE + "open;curved=0;rounded=0;dashed=1;",
    ArrowKind.DASHED_OPEN_ARROW: EDGE_STYLE_BASE + "open;curved=0;rounded=0;dashed=1;",
    ArrowKind.LOST_MESSAGE: EDGE_STYLE_BASE + "cross;curved=0;rounded=0;",
    ArrowKind.ASYNC_MESSAGE: EDGE_STYLE_BASE + "open;curved=0;rounded=0;",
}


def fmt_num(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}".rstrip("0").rstrip(".")


def add_vertex(root: Any, cell_id: str, value: str, style: str, bounds: Bounds, offset: tuple[float, float] = (0.0, 0.0)) -> Any:
    dx, dy = offset
    cell = etree.SubElement(root, "mxCell", id=cell_id, value=value, style=style, vertex="1", parent="1")
    geometry = etree.SubElement(
        cell,
        "mxGeometry",
        x=fmt_num(bounds.x + dx),
        y=fmt_num(bounds.y + dy),
        width=fmt_num(bounds.w),
        height=fmt_num(bounds.h),
    )
    geometry.set("as", "geometry")
    return cell


def add_edge(
    root: Any,
    cell_id: str,
    value: str,
    style: str,
    source: tuple[float, float],
    target: tuple[float, float],
    offset: tuple[float, float] = (0.0, 0.0),
) -> Any:
    dx, dy = offset
    cell = etree.SubElement(root, "mxCell", id=cell_id, value=value, style=style, edge="1", parent="1")
    geometry = etree.SubElement(cell, "mxGeometry", relative="1")
    geometry.set("as", "geometry")
    for (x, y), role in ((source, "sourcePoint"), (target, "targetPoint")):
        point = etree.SubElement(geometry, "mxPoint", x=fmt_num(x + dx), y=fmt_num(y + dy))
        point.set("as", role)
    return cell


def page_offset(layout: SequenceLayout) -> tuple[float, float]:
    # Shapes left of or above the origin are moved onto the page.
    bounds = layout.bounds()
    dx = PAGE_MARGIN - bounds.x if bounds.x < 0 else 0.0
    dy = PAGE_MARGIN - bounds.y if bounds.y < 0 else 0.0
    return dx, dy


def page_size(layout: SequenceLayout) -> tuple[int, int]:
    bounds = layout.bounds()
    dx, dy = page_offset(layout)
    width = max(MIN_PAGE_WIDTH, int(bounds.right + dx + PAGE_MARGIN))
    height = max(MIN_PAGE_HEIGHT, int(bounds.bottom + dy + PAGE_MARGIN))
    return width, height


def build_drawio_tree(layout: SequenceLayout, *, now: datetime | None = None) -> Any:
    """Build the ``mxfile`` element tree for a laid-out sequence diagram.

    ``now`` feeds the two timestamp-derived fields (``modified`` and the
    diagram id); pass a fixed value to get reproducible output.
    """
    now = now or datetime.now(timezone.utc)
    page_w, page_h = page_size(layout)
    offset = page_offset(layout)

    mxfile = etree.Element(
        "mxfile",
        host="app.diagrams.net",
        modified=now.isoformat(timespec="milliseconds"),
        agent="Mermaid-Converter",
        version="21.0.0",
    )
    diagram = etree.SubElement(mxfile, "diagram", name="Sequence Diagram", id=f"diagram_{int(now.timestamp() * 1000)}")
    model = etree.SubElement(
        diagram,
        "mxGraphModel",
        dx="1000",
        dy="600",
        grid="1",
        gridSize="10",
        guides="1",
        tooltips="1",
        connect="1",
        arrows="1",
        fold="1",
        page="1",
        pageScale="1",
        pageWidth=str(page_w),
        pageHeight=str(page_h),
        math="0",
        shadow="0",
    )
    root = etree.SubElement(model, "root")
    etree.SubElement(root, "mxCell", id="0")
    etree.SubElement(root, "mxCell", id="1", parent="0")

    for shape in layout.participants:
        add_vertex(root, shape.cell_id, shape.participant.label, PARTICIPANT_STYLE, shape.header, offset)
        add_vertex(root, f"{shape.cell_id}_lifeline", "", LIFELINE_STYLE, shape.lifeline, offset)

    # Loop frames go behind the messages they enclose.
    for shape in layout.loops:
        add_vertex(root, shape.cell_id, shape.loop.label, LOOP_STYLE, shape.frame, offset)

    for shape in layout.messages:
        add_edge(root, shape.cell_id, shape.message.text, EDGE_STYLES[shape.message.arrow], shape.source, shape.target, offset)

    for shape in layout.notes:
        add_vertex(root, shape.cell_id, shape.note.text, NOTE_STYLE, shape.frame, offset)

    return mxfile


def render_drawio(
    diagram: SequenceDiagram,
    *,
    settings: LayoutSettings | None = None,
    now: datetime | None = None,
) -> str:
    layout = layout_sequence(diagram, settings)
    tree = build_drawio_tree(layout, now=now)
    return etree.tostring(tree, pretty_print=True, xml_declaration=True, encoding="UTF-8").decode("utf-8")


def convert_mermaid_to_drawio(
    source: str,
    *,
    settings: LayoutSettings | None = None,
    now: datetime | None = None,
) -> str:
    return render_drawio(parse_sequence_diagram(source), settings=settings, now=now)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Convert a Mermaid sequenceDiagram to draw.io XML")
    parser.add_argument("source", nargs="?", type=Path, default=None, help="Mermaid source file (default: built-in example)")
    parser.add_argument("output", nargs="?", type=Path, default=DEFAULT_OUTPUT, help=f"output file (default: {DEFAULT_OUTPUT})")
    parser.add_argument("--spacing", type=float, default=None, help="horizontal distance between participant columns")
    parser.add_argument("--quiet", action="store_true", help="do not echo the XML to stdout")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

    settings = LayoutSettings()
    if args.spacing is not None:
        settings = dataclasses.replace(settings, spacing=args.spacing)

    try:
        source_text = args.source.read_text(encoding="utf-8") if args.source else DEFAULT_SOURCE
    except OSError as exc:
        logger.error("cannot read %s: %s", args.source, exc)
        return 1

    xml = convert_mermaid_to_drawio(source_text, settings=settings)
    if not args.quiet:
        print(xml)

    try:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(xml, encoding="utf-8")
    except OSError as exc:
        logger.error("cannot write %s: %s", args.output, exc)
        return 1

    print(f"XML written to {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
