from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from core.models import Connection, EncoderSignal, ProcessorRecord
from hooks.capabilities import CapabilityTableError, load_capability_table
from hooks.extractors import EXTRACTORS
from inspection.encoder_fusion import EncoderFusionEngine
from inspection.graph import derive_processor_tree, extract_processing_info, flatten_processor_tree
from sdk.config import SDK_CONFIG
from sdk.runtime import configure_logging

app = typer.Typer(add_completion=False, no_args_is_help=True)


def _load_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        typer.echo(f"[inspector] cannot read {path}: {exc}", err=True)
        raise typer.Exit(code=2) from exc


def _echo(payload: Dict[str, Any], pretty: bool) -> None:
    typer.echo(json.dumps(payload, indent=2 if pretty else None, ensure_ascii=False))


@app.callback()
def main(log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level, e.g. DEBUG")) -> None:
    """Offline tools for recorded inspector data."""

    configure_logging(log_level)


@app.command()
def tree(
    graph: Path = typer.Argument(..., help="JSON file with 'connections' and 'processors' lists"),
    pretty: bool = typer.Option(True, help="Indent the JSON output"),
) -> None:
    """Derive the processor tree, its flattened order and the processing summary."""

    raw = _load_json(graph)
    connections: List[Connection] = [Connection(**c) for c in raw.get("connections", [])]
    processors: List[ProcessorRecord] = [ProcessorRecord(**p) for p in raw.get("processors", [])]

    root = derive_processor_tree(connections, processors)
    flat = flatten_processor_tree(root)
    summary = extract_processing_info(flat if root is not None else processors)
    _echo(
        {
            "tree": root.to_dict() if root is not None else None,
            "flattened": [p.node_id for p in flat],
            "summary": summary.model_dump(),
        },
        pretty,
    )


@app.command()
def fuse(
    signals: Path = typer.Argument(..., help="JSON list of encoder signals, in arrival order"),
    pretty: bool = typer.Option(True, help="Indent the JSON output"),
) -> None:
    """Replay encoder signals through the fusion engine and print the final belief."""

    raw = _load_json(signals)
    if not isinstance(raw, list):
        typer.echo("[inspector] expected a JSON list of signals", err=True)
        raise typer.Exit(code=2)

    engine = EncoderFusionEngine()
    changes = sum(1 for item in raw if engine.offer(EncoderSignal(**item)))
    current = engine.current
    _echo({"changes": changes, "current": current.model_dump(mode="json") if current else None}, pretty)


@app.command()
def capabilities(
    table: Optional[Path] = typer.Option(None, "--table", help="Capability table (defaults to the configured one)"),
) -> None:
    """Validate a capability table and list its targets per family."""

    path = table or SDK_CONFIG.capability_table
    try:
        loaded = load_capability_table(path)
        loaded.validate_extractors(EXTRACTORS)
    except CapabilityTableError as exc:
        typer.echo(f"[inspector] {exc}", err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(f"capability table {loaded.version} ({len(loaded.capabilities)} rows)")
    for family in loaded.families:
        targets = [t for c in loaded.capabilities if c.family == family for t in c.targets()]
        typer.echo(f"  {family}: {', '.join(targets) if targets else '-'}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind"),
    port: int = typer.Option(8765, help="Port to listen on"),
) -> None:
    """Run the UI API under uvicorn."""

    from sdk.server import serve as run_server

    run_server(host=host, port=port)


if __name__ == "__main__":
    app()
