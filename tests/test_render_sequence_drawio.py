from datetime import datetime, timezone

import pytest
from lxml import etree

from render_sequence_drawio import (
    DEFAULT_SOURCE,
    EDGE_STYLES,
    convert_mermaid_to_drawio,
    main,
)
from sequence_parser import ArrowKind


FIXED_NOW = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)

SCENARIO_A = "participant A as Alice\nparticipant B as Bob\nA->>B: Hello\nB-->>A: Hi back"


def render_root(source: str) -> etree._Element:
    xml = convert_mermaid_to_drawio(source, now=FIXED_NOW)
    return etree.fromstring(xml.encode("utf-8"))


def cells(root: etree._Element) -> dict[str, etree._Element]:
    return {cell.get("id"): cell for cell in root.iter("mxCell")}


def edge_cells(root: etree._Element) -> list[etree._Element]:
    return [cell for cell in root.iter("mxCell") if cell.get("edge") == "1"]


def test_document_skeleton():
    root = render_root(SCENARIO_A)

    assert root.tag == "mxfile"
    assert root.get("host") == "app.diagrams.net"
    assert root.get("modified") == "2024-05-01T12:30:00.000+00:00"
    diagram = root.find("diagram")
    assert diagram.get("name") == "Sequence Diagram"
    assert diagram.get("id") == f"diagram_{int(FIXED_NOW.timestamp() * 1000)}"
    by_id = cells(root)
    assert by_id["0"].get("parent") is None
    assert by_id["1"].get("parent") == "0"


def test_scenario_a_participants_and_edges():
    root = render_root(SCENARIO_A)
    by_id = cells(root)

    alice = by_id["p0"].find("mxGeometry")
    bob = by_id["p1"].find("mxGeometry")
    assert by_id["p0"].get("value") == "Alice"
    assert (alice.get("x"), alice.get("y"), alice.get("width"), alice.get("height")) == ("80", "20", "100", "50")
    assert float(bob.get("x")) - float(alice.get("x")) == 180
    assert "p0_lifeline" in by_id and "p1_lifeline" in by_id

    hello, reply = edge_cells(root)
    assert hello.get("value") == "Hello"
    assert hello.get("style") == "html=1;verticalAlign=bottom;endArrow=block;curved=0;rounded=0;"
    assert reply.get("value") == "Hi back"
    assert reply.get("style") == "html=1;verticalAlign=bottom;endArrow=open;curved=0;rounded=0;dashed=1;"

    points = {p.get("as"): (p.get("x"), p.get("y")) for p in hello.iter("mxPoint")}
    assert points == {"sourcePoint": ("130", "110"), "targetPoint": ("310", "110")}
    reply_y = {p.get("y") for p in reply.iter("mxPoint")}
    assert reply_y == {"170"}


@pytest.mark.parametrize(
    ("arrow", "end_arrow", "dashed"),
    [
        ("->>", "block", False),
        ("->", "block", False),
        ("-->>", "open", True),
        ("-->", "open", True),
    ],
)
def test_primary_arrow_style_mapping(arrow, end_arrow, dashed):
    root = render_root(f"participant A as Alice\nparticipant B as Bob\nA{arrow}B: msg")
    (edge,) = edge_cells(root)
    style = edge.get("style")
    assert f"endArrow={end_arrow};" in style
    assert ("dashed=1;" in style) is dashed


def test_extra_arrow_kinds_have_their_own_styles():
    assert "endArrow=cross;" in EDGE_STYLES[ArrowKind.LOST_MESSAGE]
    assert "endArrow=open;" in EDGE_STYLES[ArrowKind.ASYNC_MESSAGE]
    assert "dashed=1" not in EDGE_STYLES[ArrowKind.ASYNC_MESSAGE]
    assert set(EDGE_STYLES) == set(ArrowKind)


def test_dangling_messages_reduce_edge_count_by_one_each():
    source = SCENARIO_A + "\nA->>Ghost: lost\nGhost->>B: also lost"
    root = render_root(source)
    assert len(edge_cells(root)) == 2
    assert len(cells(root)) == 2 + 4 + 2


def test_loop_frame_is_emitted_before_its_messages():
    source = SCENARIO_A.replace("A->>B: Hello", "loop Retry\nA->>B: Hello") + "\nend"
    root = render_root(source)
    ids = [cell.get("id") for cell in root.iter("mxCell")]

    assert ids.index("loop0") < ids.index("msg0")
    frame = cells(root)["loop0"]
    assert frame.get("value") == "Retry"
    geometry = frame.find("mxGeometry")
    assert float(geometry.get("y")) < 110
    assert float(geometry.get("y")) + float(geometry.get("height")) > 170


def test_degenerate_and_unbalanced_loops_produce_no_frames():
    root = render_root("end\n" + SCENARIO_A + "\nloop Empty\nend")
    assert not [cell for cell in root.iter("mxCell") if cell.get("id", "").startswith("loop")]
    assert len(edge_cells(root)) == 2


def test_notes_follow_messages():
    root = render_root(SCENARIO_A + "\nNote over A,B: shared note")
    note = cells(root)["note0"]
    geometry = note.find("mxGeometry")
    assert note.get("value") == "shared note"
    assert (geometry.get("x"), geometry.get("y"), geometry.get("width")) == ("80", "250", "280")


def test_reserved_characters_in_labels_are_escaped():
    source = 'participant A as <b>Alice</b> & "Co"\nparticipant B as Bob\nA->>B: x < y && y > z'
    xml = convert_mermaid_to_drawio(source, now=FIXED_NOW)

    assert "&lt;b" in xml
    assert "&amp; &quot;Co&quot;" in xml
    root = etree.fromstring(xml.encode("utf-8"))
    by_id = cells(root)
    assert by_id["p0"].get("value") == '<b>Alice</b> & "Co"'
    assert by_id["msg0"].get("value") == "x < y && y > z"


def test_conversion_is_repeatable_with_fixed_clock():
    assert convert_mermaid_to_drawio(SCENARIO_A, now=FIXED_NOW) == convert_mermaid_to_drawio(SCENARIO_A, now=FIXED_NOW)


def test_page_grows_with_the_diagram():
    participants = "\n".join(f"participant P{i} as Node {i}" for i in range(8))
    root = render_root(participants)
    model = root.find("diagram/mxGraphModel")
    assert int(model.get("pageWidth")) > 800
    assert render_root(SCENARIO_A).find("diagram/mxGraphModel").get("pageWidth") == "800"


def test_main_uses_builtin_example(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)

    assert main([]) == 0

    captured = capsys.readouterr()
    written = (tmp_path / "output.drawio.xml").read_text(encoding="utf-8")
    assert written.strip() in captured.out
    assert "XML written to output.drawio.xml" in captured.out
    assert convert_mermaid_to_drawio(DEFAULT_SOURCE).count('edge="1"') == 2


def test_main_reads_source_and_writes_output(tmp_path, capsys):
    source = tmp_path / "flow.mmd"
    source.write_text(SCENARIO_A + "\nNote right of B: done", encoding="utf-8")
    output = tmp_path / "nested" / "flow.drawio.xml"

    assert main([str(source), str(output), "--quiet", "--spacing", "200"]) == 0

    captured = capsys.readouterr()
    assert "<mxfile" not in captured.out
    root = etree.fromstring(output.read_bytes())
    bob = cells(root)["p1"].find("mxGeometry")
    assert bob.get("x") == "280"
    assert cells(root)["note0"].get("value") == "done"


def test_main_reports_unreadable_source(tmp_path, caplog):
    output = tmp_path / "never.drawio.xml"
    assert main([str(tmp_path / "missing.mmd"), str(output)]) == 1
    assert not output.exists()
    assert "cannot read" in caplog.text


def test_cell_ids_are_unique_when_participant_ids_look_like_cell_ids():
    source = "\n".join(
        [
            "participant A as Alice",
            "participant A_lifeline as Lane",
            "participant p0 as Zero",
            "participant msg0 as Message",
            "A->>A_lifeline: hi",
            "p0->>msg0: there",
        ]
    )
    ids = [cell.get("id") for cell in render_root(source).iter("mxCell")]
    assert len(ids) == len(set(ids))
    assert len(ids) == 2 + 4 * 2 + 2


def test_control_characters_in_labels_do_not_break_the_document():
    source = "participant A as Al\x01ice\nparticipant B as Bob\nA->>B: hi\x07\nNote over A: n\x00ote"
    root = render_root(source)
    by_id = cells(root)
    assert by_id["p0"].get("value") == "Alice"
    assert by_id["msg0"].get("value") == "hi"
    assert by_id["note0"].get("value") == "note"


def test_left_note_on_first_participant_is_moved_onto_the_page():
    root = render_root(SCENARIO_A + "\nNote left of A: far left")
    by_id = cells(root)

    note = by_id["note0"].find("mxGeometry")
    alice = by_id["p0"].find("mxGeometry")
    assert note.get("x") == "40"
    assert alice.get("x") == "200"
    page_w = int(root.find("diagram/mxGraphModel").get("pageWidth"))
    for geometry in root.iter("mxGeometry", "mxPoint"):
        if geometry.get("x") is not None:
            assert 0 <= float(geometry.get("x")) <= page_w
    hello = {p.get("as"): p.get("x") for p in by_id["msg0"].iter("mxPoint")}
    assert hello == {"sourcePoint": "250", "targetPoint": "430"}
