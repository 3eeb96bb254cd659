"""CLI entrypoint for activity segmentation."""

import argparse
import json
import logging
import sys
import time
from datetime import UTC, datetime
from pathlib import Path

from activity_summarizer import __version__
from activity_summarizer.config import Settings
from activity_summarizer.io import (
    MessageDatasetError,
    load_messages_jsonl,
    save_json,
    summarize_messages,
)
from activity_summarizer.mock_data import generate_mock_messages, write_mock_messages
from activity_summarizer.models import build_embedding_provider
from activity_summarizer.schemas import ConsolidationResult, SegmentationResult
from activity_summarizer.segmentation import (
    ConsolidationConfig,
    EmbeddingCache,
    EmbeddingCacheStore,
    EmbeddingCacheStoreError,
    SegmentationConfig,
    consolidate,
    segment,
)

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="activity",
        description="Segment chat message history into conversations for activity summaries",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        type=str,
        default="configs/default.yaml",
        help="Path to YAML config file (default: configs/default.yaml)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override configured log level.",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("info", help="Show current configuration")

    segment_parser = sub.add_parser("segment", help="Segment a message JSONL file")
    segment_parser.add_argument(
        "--input",
        type=str,
        default=None,
        help="Path to message JSONL. Defaults to configured input_messages_path.",
    )
    segment_parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Path for the segmentation JSON (default: <output_dir>/segmentation.json).",
    )
    segment_parser.add_argument(
        "--user",
        type=str,
        default=None,
        help="Tracked user id for per-conversation user message counts.",
    )
    segment_parser.add_argument(
        "--gap-threshold-seconds",
        type=float,
        default=None,
        help="Inactivity gap that starts a new conversation.",
    )
    segment_parser.add_argument(
        "--similarity-threshold",
        type=float,
        default=None,
        help="Cosine similarity below which adjacent messages are split.",
    )
    segment_parser.add_argument(
        "--no-semantic",
        action="store_true",
        help="Skip embedding-based topic splitting.",
    )
    segment_parser.add_argument(
        "--consolidate",
        action="store_true",
        help="Also group related conversations into activities.",
    )
    segment_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the stats summary as JSON.",
    )

    cache_parser = sub.add_parser("cache", help="Inspect or maintain the embedding cache")
    cache_parser.add_argument(
        "--path",
        type=str,
        default=None,
        help="Cache database path (defaults to configured embedding_cache_path).",
    )
    cache_sub = cache_parser.add_subparsers(dest="cache_command")
    cache_stats_parser = cache_sub.add_parser("stats", help="Show cache statistics")
    cache_stats_parser.add_argument("--json", action="store_true", help="Print as JSON.")
    cache_clear_parser = cache_sub.add_parser("clear", help="Delete every cached embedding")
    cache_clear_parser.add_argument(
        "--yes",
        action="store_true",
        help="Apply deletion. Without this flag, command is dry-run only.",
    )
    cache_prune_parser = cache_sub.add_parser("prune", help="Delete old cached embeddings")
    cache_prune_parser.add_argument(
        "--max-age-days",
        type=float,
        required=True,
        help="Delete entries created more than this many days ago.",
    )
    cache_prune_parser.add_argument(
        "--yes",
        action="store_true",
        help="Apply deletion. Without this flag, command is dry-run only.",
    )

    mock_parser = sub.add_parser("generate-mock", help="Write a synthetic message history")
    mock_parser.add_argument("--channels", type=int, default=3, help="Number of channels.")
    mock_parser.add_argument("--bursts", type=int, default=6, help="Bursts per channel.")
    mock_parser.add_argument("--seed", type=int, default=7, help="Deterministic seed.")
    mock_parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output JSONL path (defaults to configured input_messages_path).",
    )

    return parser


def _print_json(payload: dict | list[dict]) -> None:
    """Pretty-print JSON payload."""

    print(json.dumps(payload, indent=2, ensure_ascii=True))


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def cmd_info(settings: Settings) -> None:
    print(f"activity-summarizer v{__version__}")
    print(f"  Embedding provider: {settings.embedding_provider}")
    print(f"  Embedding model:  {settings.embedding_model}")
    print(f"  Embedding dims:   {settings.embedding_dimensions}")
    print(f"  Key source:       {settings.resolved_embedding_key_source()}")
    print(f"  Embed timeout s:  {settings.embedding_timeout_seconds}")
    print(f"  Embed concurrency: {settings.embedding_max_concurrency}")
    print(f"  Client retries:   {settings.client_max_retries}")
    print(f"  Backoff seconds:  {settings.client_backoff_seconds}")
    print(f"  Gap threshold s:  {settings.gap_threshold_seconds}")
    print(f"  Similarity threshold: {settings.similarity_threshold}")
    print(f"  Min semantic msgs: {settings.min_messages_for_semantic}")
    print(f"  Semantic enabled: {settings.semantic_enabled}")
    print(f"  Channel concurrency: {settings.channel_max_concurrency}")
    print(f"  Tracked user:     {settings.tracked_user_id or '(not set)'}")
    print(f"  Consolidation:    {settings.consolidation_enabled}")
    print(f"  Embedding cache:  {settings.embedding_cache_path}")
    print(f"  Input file:       {settings.input_messages_path}")
    print(f"  Output dir:       {settings.output_dir}")


def _stats_payload(result: SegmentationResult, *, elapsed_seconds: float) -> dict:
    return {
        **result.stats.model_dump(),
        "failed_channel_count": len(result.failures),
        "failures": [failure.model_dump() for failure in result.failures],
        "elapsed_seconds": round(elapsed_seconds, 3),
    }


def _segment_with_cache(
    settings: Settings,
    messages: list,
    config: SegmentationConfig,
    consolidation: ConsolidationConfig | None = None,
) -> tuple[SegmentationResult, ConsolidationResult | None, dict, dict]:
    """Run segmentation (and optional consolidation) with the configured provider and cache.

    Returns both results, the cache counters and the provider request metrics.
    """

    provider = build_embedding_provider(settings)
    try:
        with EmbeddingCacheStore(settings.embedding_cache_path) as store:
            cache = EmbeddingCache(
                provider=provider,
                dimensions=settings.embedding_dimensions,
                store=store,
                timeout_seconds=settings.embedding_timeout_seconds,
                max_concurrency=settings.embedding_max_concurrency,
            )
            result = segment(messages, config=config, cache=cache)
            grouped = (
                consolidate(result.conversations, config=consolidation, cache=cache)
                if consolidation is not None
                else None
            )
    finally:
        provider.close()
    return result, grouped, cache.counters.to_dict(), provider.metrics_snapshot()


def cmd_segment(settings: Settings, args: argparse.Namespace) -> None:
    """Load messages, segment them, and write the result."""

    input_path = Path(args.input).expanduser() if args.input else settings.input_messages_path
    try:
        messages = load_messages_jsonl(input_path)
    except MessageDatasetError as exc:
        print(f"Input load failed: {exc}")
        sys.exit(1)

    config = SegmentationConfig.from_settings(
        settings,
        gap_threshold_seconds=args.gap_threshold_seconds,
        similarity_threshold=args.similarity_threshold,
        user_id=args.user,
        semantic_enabled=False if args.no_semantic else None,
    )
    consolidation = (
        ConsolidationConfig.from_settings(settings, user_id=args.user)
        if args.consolidate or settings.consolidation_enabled
        else None
    )

    summary = summarize_messages(messages)
    logger.info(
        "Loaded %d messages across %d channels from %s",
        summary.message_count,
        summary.channel_count,
        input_path,
    )

    started = time.perf_counter()
    cache_counters: dict | None = None
    provider_metrics: dict | None = None
    grouped: ConsolidationResult | None = None
    if config.semantic_enabled:
        try:
            result, grouped, cache_counters, provider_metrics = _segment_with_cache(
                settings, messages, config, consolidation
            )
        except (ValueError, EmbeddingCacheStoreError) as exc:
            print(f"Semantic segmentation unavailable: {exc}")
            print("  Re-run with --no-semantic to segment by threads and time gaps only.")
            sys.exit(1)
    else:
        result = segment(messages, config=config)
        if consolidation is not None:
            grouped = consolidate(result.conversations, config=consolidation)
    elapsed = time.perf_counter() - started

    output_path = (
        Path(args.output).expanduser()
        if args.output
        else settings.output_dir / "segmentation.json"
    )
    save_json(
        output_path,
        {
            "generated_at_utc": datetime.now(UTC).isoformat(),
            "input_path": str(input_path),
            "config": {
                "gap_threshold_seconds": config.gap_threshold_seconds,
                "similarity_threshold": config.similarity_threshold,
                "min_messages_for_semantic": config.min_messages_for_semantic,
                "semantic_enabled": config.semantic_enabled,
                "user_id": config.user_id,
            },
            "cache": cache_counters,
            "provider": provider_metrics,
            **result.model_dump(mode="json"),
            "consolidation": grouped.model_dump(mode="json") if grouped is not None else None,
        },
    )

    payload = _stats_payload(result, elapsed_seconds=elapsed)
    if grouped is not None:
        payload["consolidated_groups"] = grouped.stats.consolidated_groups
    payload["output_path"] = str(output_path)
    if args.json:
        _print_json(payload)
        return

    print("Segmentation complete")
    print(f"  Messages:           {payload['total_messages']}")
    print(f"  Conversations:      {payload['total_conversations']}")
    print(f"  Threads extracted:  {payload['threads_extracted']}")
    print(f"  Time-gap splits:    {payload['time_gap_splits']}")
    print(f"  Semantic splits:    {payload['semantic_splits']}")
    if grouped is not None:
        print(f"  Activity groups:    {grouped.stats.consolidated_groups}")
    if cache_counters is not None:
        print(
            "  Embedding cache:    "
            f"hits={cache_counters['hits']} misses={cache_counters['misses']} "
            f"coalesced={cache_counters['coalesced']} "
            f"provider_calls={cache_counters['provider_calls']} "
            f"failures={cache_counters['failures']}"
        )
    if provider_metrics is not None:
        print(
            "  Embedding provider: "
            f"model={provider_metrics['model']} "
            f"requests={provider_metrics['request_count']} "
            f"retries={provider_metrics['retry_count']}"
        )
    print(f"  Failed channels:    {payload['failed_channel_count']}")
    for failure in result.failures:
        print(f"    - {failure.channel_id} [{failure.error_type}] {failure.error}")
    print(f"  Output:             {output_path}")


def cmd_cache(settings: Settings, args: argparse.Namespace) -> None:
    """Inspect or maintain the persistent embedding cache."""

    path = Path(args.path).expanduser() if args.path else settings.embedding_cache_path
    if args.cache_command is None:
        print("Specify a cache action: stats, clear, or prune.")
        sys.exit(1)

    try:
        store = EmbeddingCacheStore(path)
    except EmbeddingCacheStoreError as exc:
        print(f"Embedding cache error: {exc}")
        sys.exit(1)

    with store:
        if args.cache_command == "stats":
            stats = store.stats()
            if args.json:
                _print_json(stats)
                return
            print("Embedding cache")
            print(f"  Path:      {stats['path']}")
            print(f"  Entries:   {stats['entry_count']}")
            print(f"  Size:      {stats['size_bytes']} bytes")
            for row in stats["models"]:
                print(f"    - {row['model']} (dim={row['dimensions']}): {row['entries']} entries")
        elif args.cache_command == "clear":
            if not args.yes:
                print(f"Would delete {store.count()} entries from {path}.")
                print("  Re-run with --yes to apply deletions.")
                return
            print(f"Deleted {store.clear()} entries from {path}.")
        elif args.cache_command == "prune":
            try:
                matched = store.prune(max_age_days=args.max_age_days, dry_run=not args.yes)
            except ValueError as exc:
                print(f"Cache pruning configuration error: {exc}")
                sys.exit(1)
            if args.yes:
                print(f"Pruned {matched} entries older than {args.max_age_days} days.")
            else:
                print(f"Would prune {matched} entries older than {args.max_age_days} days.")
                print("  Re-run with --yes to apply deletions.")


def cmd_generate_mock(settings: Settings, args: argparse.Namespace) -> None:
    messages = generate_mock_messages(
        channel_count=args.channels,
        bursts_per_channel=args.bursts,
        seed=args.seed,
    )
    output = Path(args.output).expanduser() if args.output else settings.input_messages_path
    out_path = write_mock_messages(output, messages)
    print(f"Generated {len(messages)} mock messages at {out_path}")


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    settings = Settings.from_yaml(args.config)
    _configure_logging(args.log_level or settings.log_level)

    if args.command == "info":
        cmd_info(settings)
    elif args.command == "segment":
        cmd_segment(settings, args)
    elif args.command == "cache":
        cmd_cache(settings, args)
    elif args.command == "generate-mock":
        cmd_generate_mock(settings, args)
    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    main()
