"""
ANNOGRAPH MAIN - Entry Point and CLI

Commands:
    stats    - Build the knowledge graph from a store export and print statistics
    export   - Build the graph and export it (Arrow IPC, Parquet or JSON)
    search   - Run a multi-condition query and print matching node ids
    env      - Show module availability and effective settings

Usage:
    # Graph statistics
    python main.py stats data/store.json

    # Export for the renderer
    python main.py export data/store.json --format arrow --output ./export

    # Images annotated with Person (or a subtype) whose title mentions "mona"
    python main.py search data/store.json --type IMAGE \\
        --where entity_type=Person --where "property:title~=mona"

    # Everything linked to an entity type
    python main.py search data/store.json --type IMAGE --linked Person

Where expressions:
    ATTR=VALUE     is
    ATTR!=VALUE    is not
    ATTR*=VALUE    contains
    ATTR~=VALUE    fuzzy
    ATTR?          is not empty
    !ATTR          is empty

The first operator splits the expression; the value may contain "=", "!"
or "?".

Settings come from ./annograph.toml (or --config) and ANNOGRAPH_* variables.
"""
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent))


def parse_where(expression: str):
    """
    Turn a --where expression into a SimpleSentence.

    Raises:
        ValueError: If the expression has no attribute
    """
    from core.ontology import Comparator, ConditionType
    from core.search import SimpleSentence

    operators = {"!": Comparator.IS_NOT, "*": Comparator.CONTAINS, "~": Comparator.FUZZY}
    expression = expression.strip()
    comparator: Comparator
    value: Optional[str] = None

    # The first "=" ends the operator; the value may contain anything
    split = expression.find("=")
    if split >= 0:
        prefix = expression[split - 1] if split > 0 else ""
        comparator = operators.get(prefix, Comparator.IS)
        attribute = expression[:split - 1] if prefix in operators else expression[:split]
        value = expression[split + 1:]
    elif expression.startswith("!"):
        attribute, comparator = expression[1:], Comparator.IS_EMPTY
    elif expression.endswith("?"):
        attribute, comparator = expression[:-1], Comparator.IS_NOT_EMPTY
    else:
        raise ValueError(f"Not a where expression: {expression!r}")

    attribute = attribute.strip()
    if not attribute:
        raise ValueError(f"Missing attribute in {expression!r}")

    return SimpleSentence(
        condition_type=ConditionType.WHERE,
        attribute=attribute,
        comparator=comparator,
        value=value.strip() if value is not None else None,
    )


def _load(args):
    """Settings, store and built graph for a command."""
    from infrastructure.config import load_settings, ConfigError
    from infrastructure.logger import configure_logging, configure_logger, JournalConfig
    from infrastructure.store import load_store, StoreError
    from core.graph_builder import GraphBuilder

    overrides = {}
    if getattr(args, "no_folders", False):
        overrides["include_folders"] = False
    if getattr(args, "root", None):
        overrides["root_folder_id"] = args.root

    try:
        settings = load_settings(args.config, **overrides)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    configure_logging(args.log_level or settings.log_level)
    if settings.log_path:
        configure_logger(JournalConfig(enable_file_log=True, log_path=Path(settings.log_path)))

    try:
        store = load_store(args.store, settings.fuzzy_threshold, settings.search_limit)
    except FileNotFoundError:
        print(f"Error: store export not found: {args.store}")
        sys.exit(1)
    except StoreError as e:
        print(f"Error: {e}")
        sys.exit(1)

    builder = GraphBuilder(store, settings)
    graph = builder.build()
    return settings, store, graph, builder.last_report


def cmd_stats(args):
    """Handle stats command - build and summarise the graph."""
    from core.ontology import NodeType, PrimitiveType

    settings, _, graph, report = _load(args)

    print("=" * 50)
    print("ANNOGRAPH KNOWLEDGE GRAPH")
    print("=" * 50)
    print(f"Nodes:           {graph.node_count}")
    for node_type in NodeType:
        print(f"  {node_type.value:<15}{len(graph.get_nodes_by_type(node_type.value))}")
    print(f"Links:           {graph.link_count}")
    for primitive_type in PrimitiveType:
        count = sum(1 for link in graph.links if link.types == (primitive_type.value,))
        print(f"  {primitive_type.value:<27}{count}")
    mixed = sum(1 for link in graph.links if not link.is_homogeneous)
    print(f"  {'(mixed)':<27}{mixed}")
    print(f"Degree range:    {graph.min_degree}..{graph.max_degree}")
    print(f"Weight range:    {graph.min_link_weight}..{graph.max_link_weight}")
    print(f"Skipped facts:   {report.skipped}")
    print("=" * 50)


def cmd_export(args):
    """Handle export command - export graph to files."""
    from viz.core import create_snapshot, serialize_to_arrow

    settings, _, graph, _ = _load(args)

    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)

    print(f"Exporting graph to {output_dir}...")

    if args.format == "arrow":
        nodes_bytes, links_bytes = serialize_to_arrow(create_snapshot(graph, settings))
        nodes_path = output_dir / "nodes.arrow"
        links_path = output_dir / "links.arrow"
        nodes_path.write_bytes(nodes_bytes)
        links_path.write_bytes(links_bytes)
    elif args.format == "parquet":
        nodes_path = output_dir / "nodes.parquet"
        links_path = output_dir / "links.parquet"
        graph.to_polars_nodes().write_parquet(nodes_path)
        graph.to_polars_links().write_parquet(links_path)
    else:
        from core.schemas import serialize_nodes, serialize_links
        nodes_path = output_dir / "nodes.json"
        links_path = output_dir / "links.json"
        nodes_path.write_bytes(serialize_nodes(list(graph.nodes)))
        links_path.write_bytes(serialize_links(list(graph.links)))

    print(f"Exported {graph.node_count} nodes, {graph.link_count} links")
    print(f"  Nodes: {nodes_path}")
    print(f"  Links: {links_path}")


async def _run_search(engine, object_type: str, sentences: List) -> None:
    from core.search import EMPTY_SENTENCE

    engine.set_object_type(object_type)
    for i, sentence in enumerate(sentences):
        if i > 0:
            engine.add_condition()
        engine.update_condition(EMPTY_SENTENCE, sentence)
    await engine.wait_idle()


def cmd_search(args):
    """Handle search command - run a query and print matches."""
    from core.ontology import ConditionType
    from core.search import NestedSentence
    from core.query_engine import QueryEngine, QueryError

    settings, store, graph, _ = _load(args)

    try:
        sentences = [parse_where(w) for w in args.where or []]
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    sentences.extend(
        NestedSentence(condition_type=ConditionType.WHERE, value=v) for v in args.linked or []
    )
    if not sentences:
        print("Error: give at least one --where or --linked condition")
        sys.exit(1)

    engine = QueryEngine(graph, store=store, settings=settings)
    try:
        asyncio.run(_run_search(engine, args.type, sentences))
    except QueryError as e:
        print(f"Error: {e}")
        sys.exit(1)

    for status in engine.condition_status():
        if status.error:
            print(f"Condition {status.id} failed: {status.error}")

    predicate = engine.predicate
    if predicate is None:
        print("No active query (some condition did not resolve)")
        sys.exit(1)

    for node_id in sorted(predicate.matches):
        print(f"{node_id}\t{graph.get_node(node_id).label}")
    print(f"{len(predicate.matches)} {args.type.lower()} node(s) matched")


def cmd_env(args):
    """Handle env command - show module availability and settings."""
    import platform
    from infrastructure.config import load_settings, ConfigError

    print("=" * 50)
    print("ANNOGRAPH ENVIRONMENT REPORT")
    print("=" * 50)
    print(f"OS:              {platform.system()} {platform.release()}")
    print(f"Python:          {platform.python_version()}")
    print(f"Working Dir:     {Path.cwd()}")
    print("=" * 50)

    print("\nModule Availability:")
    modules = [
        ("rustworkx", "rustworkx"),
        ("polars", "polars"),
        ("msgspec", "msgspec"),
    ]
    for name, module in modules:
        try:
            __import__(module)
            print(f"  [+] {name}")
        except ImportError:
            print(f"  [x] {name} (not installed)")

    print("\nEffective Settings:")
    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        print(f"  invalid: {e}")
        return
    import msgspec
    for key, value in msgspec.structs.asdict(settings).items():
        print(f"  {key:<24}{value}")


def main(argv: Optional[List[str]] = None):
    """Main entry point with subcommands."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Annograph - Knowledge graph engine for image annotations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", type=str, help="Path to annograph.toml")
    parser.add_argument("--log-level", type=str, help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    def add_store_args(sub):
        sub.add_argument("store", help="Path to a JSON store export")
        sub.add_argument("--root", help="Build only below this folder id")
        sub.add_argument("--no-folders", action="store_true", help="Leave folders out of the graph")

    # stats command
    stats_parser = subparsers.add_parser("stats", help="Print graph statistics")
    add_store_args(stats_parser)
    stats_parser.set_defaults(func=cmd_stats)

    # export command
    export_parser = subparsers.add_parser("export", help="Export graph to files")
    add_store_args(export_parser)
    export_parser.add_argument("--output", "-o", default="./export", help="Output directory")
    export_parser.add_argument("--format", choices=["arrow", "parquet", "json"], default="arrow")
    export_parser.set_defaults(func=cmd_export)

    # search command
    search_parser = subparsers.add_parser("search", help="Run a query")
    add_store_args(search_parser)
    search_parser.add_argument("--type", choices=["IMAGE", "FOLDER"], default="IMAGE")
    search_parser.add_argument("--where", action="append", help="Condition, e.g. entity_type=Person")
    search_parser.add_argument("--linked", action="append", help="Nodes linked to this entity type")
    search_parser.set_defaults(func=cmd_search)

    # env command
    env_parser = subparsers.add_parser("env", help="Show environment report")
    env_parser.set_defaults(func=cmd_env)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
