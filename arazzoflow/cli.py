#!/usr/bin/env python3
# arazzoflow/cli.py

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from arazzoflow.graph.deriver import derive_graph
from arazzoflow.graph.diagnostics import graph_issues, graph_metrics
from arazzoflow.graph.layout import DIRECTIONS, LayoutConfig, layout, layout_from_env
from arazzoflow.model.checker import structural_issues
from arazzoflow.model.document import Document
from arazzoflow.model.errors import NotFoundError, StructuralError
from arazzoflow.model.loader import document_from_dict
from arazzoflow.utils.io import dump_any, load_any
from arazzoflow.utils.logger import init_logger

app = typer.Typer(help="arazzoflow CLI - derive execution graphs and layouts from Arazzo workflow documents")

INPUT_OPT = typer.Option(..., "--input", "-i", exists=True, readable=True, help="Path to an Arazzo document (.json/.yaml/.yml)")
WORKFLOW_OPT = typer.Option(None, "--workflow", "-w", help="workflowId to use (default: first workflow)")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir", help="Also write a rotating log file here"),
):
    init_logger(level=logging.DEBUG if verbose else None, log_dir=log_dir)


def _fail(issues) -> None:
    print("Detected issues:")
    for it in issues:
        print(f"- {it}")
    raise typer.Exit(code=1)


def _load(path: Path) -> Document:
    try:
        raw = load_any(path)
    except ValueError as e:
        raise typer.BadParameter(str(e))
    try:
        return document_from_dict(raw)
    except StructuralError as e:
        _fail(e.issues)


def _workflow_id(doc: Document, workflow: Optional[str]) -> str:
    return workflow if workflow is not None else doc.workflows[0].workflow_id


def _emit(payload: Dict[str, Any], out: Optional[Path]) -> None:
    if out is not None:
        try:
            dump_any(out, payload)
        except ValueError as e:
            raise typer.BadParameter(str(e))
        print(f"[ok] wrote {out}")
    else:
        print(json.dumps(payload, ensure_ascii=False, indent=2))


def _derive(doc: Document, workflow: Optional[str], hide_failure_edges: bool = False, catalog: Optional[Path] = None):
    try:
        ops = load_any(catalog) if catalog is not None else None
    except ValueError as e:
        raise typer.BadParameter(str(e))
    if ops is not None and not isinstance(ops, dict):
        raise typer.BadParameter(f"operation catalog must be a mapping: {catalog}")
    try:
        return derive_graph(doc, _workflow_id(doc, workflow), hide_failure_edges=hide_failure_edges, catalog=ops)
    except NotFoundError as e:
        _fail([f"[STRUCTURE] {e}"])
    except StructuralError as e:
        _fail(e.issues)


@app.command()
def validate(
    input: Path = INPUT_OPT,
    report: Optional[Path] = typer.Option(None, "--report", help="Write a JSON or YAML report to this path"),
):
    """
    Check a document: schema, structural rules, then per-workflow graph
    diagnostics (dangling references, unreachable steps).
    Exits 1 when the document is structurally invalid.
    """
    doc = _load(input)
    issues = structural_issues(doc)

    workflows = {}
    for wf in doc.workflows:
        try:
            g = derive_graph(doc, wf.workflow_id)
        except StructuralError:
            # not derivable; the same issues are already in structural_issues
            workflows[wf.workflow_id] = {"issues": [], "metrics": None}
            continue
        workflows[wf.workflow_id] = {"issues": graph_issues(g), "metrics": graph_metrics(g)}

    payload = {"input": str(input), "valid": not issues, "issues": issues, "workflows": workflows}
    if report is not None:
        _emit(payload, report)

    for wid, detail in workflows.items():
        for it in detail["issues"]:
            print(f"- ({wid}) {it}")
    if issues:
        _fail(issues)
    print(f"[ok] {input} is structurally valid ({len(doc.workflows)} workflow(s))")


@app.command()
def graph(
    input: Path = INPUT_OPT,
    workflow: Optional[str] = WORKFLOW_OPT,
    hide_failure_edges: bool = typer.Option(False, "--hide-failure-edges", help="Omit onFailure goto/retry edges"),
    catalog: Optional[Path] = typer.Option(None, "--catalog", exists=True, help="JSON/YAML mapping operationId -> HTTP method"),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write JSON (or YAML, by extension) here instead of stdout"),
):
    """Derive the execution graph (nodes, edges, topological info) of one workflow."""
    doc = _load(input)
    _emit(_derive(doc, workflow, hide_failure_edges, catalog).to_dict(), out)


@app.command("layout")
def layout_cmd(
    input: Path = INPUT_OPT,
    workflow: Optional[str] = WORKFLOW_OPT,
    direction: Optional[str] = typer.Option(None, "--direction", help="vertical | horizontal"),
    pitch: Optional[float] = typer.Option(None, "--pitch", help="Distance between ranks along the flow"),
    lateral_pitch: Optional[float] = typer.Option(None, "--lateral-pitch", help="Distance between branch columns"),
    hide_failure_edges: bool = typer.Option(False, "--hide-failure-edges", help="Lay out without onFailure edges"),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write JSON (or YAML, by extension) here instead of stdout"),
):
    """Compute node positions for one workflow (options override ARAZZOFLOW_LAYOUT_* env vars)."""
    base = layout_from_env()
    if direction is not None and direction.lower() not in DIRECTIONS:
        raise typer.BadParameter(f"Invalid direction '{direction}'. Choose one of: {', '.join(DIRECTIONS)}")
    config = LayoutConfig(
        direction=direction.lower() if direction else base.direction,
        pitch=pitch if pitch is not None else base.pitch,
        lateral_pitch=lateral_pitch if lateral_pitch is not None else base.lateral_pitch,
        anchor_x=base.anchor_x,
        anchor_y=base.anchor_y,
    )
    doc = _load(input)
    g = _derive(doc, workflow, hide_failure_edges)
    positions = layout(g, config=config)
    _emit({
        "workflowId": g.workflow_id,
        "direction": config.direction,
        "positions": {nid: pos.to_dict() for nid, pos in positions.items()},
    }, out)


@app.command()
def order(
    input: Path = INPUT_OPT,
    workflow: Optional[str] = WORKFLOW_OPT,
):
    """Print the cycle-safe step order with start, end and unreachable steps."""
    doc = _load(input)
    _emit(_derive(doc, workflow).to_dict()["topo"], None)


if __name__ == "__main__":
    app()
