"""
lore CLI - inspect and maintain the knowledge store.

Usage:
    lore knowledge list [--type T] [--min-confidence X] [--limit N] [--json]
    lore knowledge get TYPE KEY [--json]
    lore knowledge upsert TYPE KEY CONTENT [--data JSON]
    lore knowledge contradict TYPE KEY CONTENT
    lore context [--digest-file F] [--author A] [--community C] [--topic T]...
    lore reflect --events FILE [--force] [--json]
    lore maintain [--stale-days N] [--min-confidence X]
    lore reflections [--limit N] [--json]
    lore stats [--json]
"""

import argparse
import json
import logging
import re
import sys
from pathlib import Path

from lore.config import ReflectionConfig
from lore.context import ContextAssembler, format_memory_for_prompt
from lore.logging_config import log_maintenance, log_reflection, setup_lore_logging
from lore.maintenance import run_knowledge_maintenance
from lore.models.auto import auto_configure_model
from lore.observe import should_reflect
from lore.reflection import ReflectionPipeline
from lore.storage import SQLiteStorage
from lore.types import (
    VALID_KNOWLEDGE_TYPE_VALUES,
    CycleEvents,
    KnowledgeRecord,
    NotableInteraction,
)

# Set up logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

KNOWLEDGE_TYPE_CHOICES = sorted(VALID_KNOWLEDGE_TYPE_VALUES)


def validate_input(value: str, field_name: str, max_length: int = 1000) -> str:
    """Validate and sanitize CLI inputs."""
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string")

    if len(value) > max_length:
        raise ValueError(f"{field_name} too long (max {max_length} characters)")

    # Remove null bytes and control characters except newlines
    sanitized = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", value)

    return sanitized


def _record_to_dict(record: KnowledgeRecord) -> dict:
    return {
        "id": record.id,
        "type": record.knowledge_type.value,
        "key": record.knowledge_key,
        "content": record.content,
        "structured_data": record.structured_data,
        "confidence": record.confidence,
        "evidence_count": record.evidence_count,
        "last_evidence_at": record.last_evidence_at,
    }


def _print_record(record: KnowledgeRecord) -> None:
    print(
        f"[{record.knowledge_type.value}] {record.knowledge_key} "
        f"(conf:{record.confidence:.2f}, evidence:{record.evidence_count})"
    )
    print(f"  {record.content}")
    if record.structured_data:
        print(f"  data: {record.structured_data}")


def load_cycle_events(path: Path) -> CycleEvents:
    """Read a cycle's events from a JSON file.

    The file holds the counters and a ``notable_interactions`` list whose
    entries use NotableInteraction's field names.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError("Events file must contain a JSON object")

    interactions = [NotableInteraction(**item) for item in data.get("notable_interactions", [])]
    return CycleEvents(
        posts_discovered=int(data.get("posts_discovered", 0)),
        posts_engaged=int(data.get("posts_engaged", 0)),
        attacks_cataloged=int(data.get("attacks_cataloged", 0)),
        posts_failed=int(data.get("posts_failed", 0)),
        replies_sent=int(data.get("replies_sent", 0)),
        notable_interactions=interactions,
    )


def cmd_knowledge(args, storage: SQLiteStorage):
    """Handle knowledge subcommands."""
    if args.knowledge_action == "list":
        if args.type:
            records = storage.get_knowledge_by_type(
                args.type, min_confidence=args.min_confidence, limit=args.limit
            )
        else:
            records = storage.list_knowledge(min_confidence=args.min_confidence, limit=args.limit)

        if args.json:
            print(json.dumps([_record_to_dict(r) for r in records], indent=2, default=str))
            return
        if not records:
            print("No knowledge records found.")
            return
        for record in records:
            _print_record(record)

    elif args.knowledge_action == "get":
        key = validate_input(args.key, "key", 200)
        record = storage.get_knowledge(args.type, key)
        if record is None:
            print(f"✗ No {args.type} record for key '{key}'")
            return
        if args.json:
            print(json.dumps(_record_to_dict(record), indent=2, default=str))
        else:
            _print_record(record)

    elif args.knowledge_action == "upsert":
        key = validate_input(args.key, "key", 200)
        content = validate_input(args.content, "content", 500)
        structured = None
        if args.data:
            structured = json.loads(args.data)
            if not isinstance(structured, dict):
                raise ValueError("--data must be a JSON object")
        record_id, is_new = storage.upsert_knowledge(args.type, key, content, structured)
        record = storage.get_knowledge(args.type, key)
        verb = "Created" if is_new else "Reinforced"
        confidence = record.confidence if record else 0.0
        print(f"✓ {verb} {args.type}:{key} (id={record_id}, conf:{confidence:.2f})")

    elif args.knowledge_action == "contradict":
        key = validate_input(args.key, "key", 200)
        content = validate_input(args.content, "content", 500)
        if storage.contradict_knowledge(args.type, key, content):
            record = storage.get_knowledge(args.type, key)
            confidence = record.confidence if record else 0.0
            print(f"✓ Contradicted {args.type}:{key} (conf:{confidence:.2f})")
        else:
            print(f"✗ No {args.type} record for key '{key}'")


def cmd_context(args, storage: SQLiteStorage):
    """Assemble and print the prompt context block."""
    digest = None
    if args.digest_file:
        digest = Path(args.digest_file).read_text(encoding="utf-8")

    assembler = ContextAssembler(storage)
    context = assembler.build_context(
        digest,
        author_key=args.author,
        community_key=args.community,
        topics=args.topic,
    )
    block = format_memory_for_prompt(context)
    if block is None:
        print("(empty context)")
    else:
        print(block)


def cmd_reflect(args, storage: SQLiteStorage):
    """Run one reflection over a cycle's events."""
    events = load_cycle_events(Path(args.events))
    if not args.force and not should_reflect(events):
        print("Nothing to reflect on (no posts discovered, no replies sent).")
        return

    model = auto_configure_model()
    if model is None:
        print("✗ No model configured. Set ANTHROPIC_API_KEY, OPENAI_API_KEY, or LORE_MODEL_PROVIDER.")
        sys.exit(1)

    pipeline = ReflectionPipeline(storage, model, config=ReflectionConfig.from_env())
    result = pipeline.run(events)
    log_reflection(
        result.reflection_id,
        result.knowledge_updates,
        failed=result.failed_updates,
        cost=result.cost,
    )

    if args.json:
        print(
            json.dumps(
                {
                    "reflection_id": result.reflection_id,
                    "learning_summary": result.learning_summary,
                    "knowledge_updates": result.knowledge_updates,
                    "failed_updates": result.failed_updates,
                    "cost": result.cost,
                },
                indent=2,
            )
        )
        return

    print(f"✓ Reflection #{result.reflection_id} saved")
    print(f"  {result.learning_summary}")
    print(f"  Knowledge updates applied: {result.knowledge_updates}")
    if result.failed_updates:
        print(f"  ⚠ Failed updates: {result.failed_updates}")
    print(f"  Cost: ${result.cost:.6f}")


def cmd_maintain(args, storage: SQLiteStorage):
    """Decay stale knowledge, then prune dead records."""
    result = run_knowledge_maintenance(
        storage, stale_days=args.stale_days, min_confidence=args.min_confidence
    )
    if not result.success:
        print(f"✗ Maintenance failed: {result.error}")
        sys.exit(1)
    log_maintenance(result.decayed, result.pruned)
    print(f"✓ Maintenance complete: decayed={result.decayed} pruned={result.pruned}")


def cmd_reflections(args, storage: SQLiteStorage):
    """Show recent reflections."""
    reflections = storage.get_recent_reflections(args.limit)
    if args.json:
        print(
            json.dumps(
                [
                    {
                        "id": r.id,
                        "cycle_timestamp": r.cycle_timestamp,
                        "cycle_hour": r.cycle_hour,
                        "posts_discovered": r.posts_discovered,
                        "posts_engaged": r.posts_engaged,
                        "attacks_cataloged": r.attacks_cataloged,
                        "posts_failed": r.posts_failed,
                        "replies_sent": r.replies_sent,
                        "learning_summary": r.learning_summary,
                        "knowledge_updates": json.loads(r.knowledge_updates or "[]"),
                        "reflection_cost": r.reflection_cost,
                    }
                    for r in reflections
                ],
                indent=2,
            )
        )
        return

    if not reflections:
        print("No reflections yet.")
        return
    for r in reflections:
        print(f"#{r.id} [{r.cycle_timestamp}] posts:{r.posts_discovered} replies:{r.replies_sent}")
        print(f"  {r.learning_summary or 'No summary'}")


def cmd_stats(args, storage: SQLiteStorage):
    """Show knowledge counts and average confidence per type."""
    stats = storage.get_knowledge_stats()
    if args.json:
        print(json.dumps(stats, indent=2))
        return

    if not stats:
        print("Knowledge store is empty.")
        return
    print("Knowledge by type:")
    for ktype in KNOWLEDGE_TYPE_CHOICES:
        if ktype in stats:
            entry = stats[ktype]
            print(f"  {ktype}: {entry['count']} (avg conf:{entry['avg_confidence']:.2f})")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lore",
        description="Confidence-weighted knowledge memory for an engagement agent",
    )
    parser.add_argument("--db", help="Database path (default: $LORE_DATA_DIR/memory.db)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # knowledge
    p_knowledge = subparsers.add_parser("knowledge", help="Knowledge record operations")
    knowledge_sub = p_knowledge.add_subparsers(dest="knowledge_action", required=True)

    # lore knowledge list [--type T] [--min-confidence X] [--limit N]
    knowledge_list = knowledge_sub.add_parser("list", help="List knowledge by confidence")
    knowledge_list.add_argument("--type", "-t", choices=KNOWLEDGE_TYPE_CHOICES)
    knowledge_list.add_argument("--min-confidence", "-m", type=float, default=0.0)
    knowledge_list.add_argument("--limit", "-l", type=int, default=20)
    knowledge_list.add_argument("--json", "-j", action="store_true")

    # lore knowledge get TYPE KEY
    knowledge_get = knowledge_sub.add_parser("get", help="Show one knowledge record")
    knowledge_get.add_argument("type", choices=KNOWLEDGE_TYPE_CHOICES)
    knowledge_get.add_argument("key")
    knowledge_get.add_argument("--json", "-j", action="store_true")

    # lore knowledge upsert TYPE KEY CONTENT [--data JSON]
    knowledge_upsert = knowledge_sub.add_parser("upsert", help="Create or reinforce a record")
    knowledge_upsert.add_argument("type", choices=KNOWLEDGE_TYPE_CHOICES)
    knowledge_upsert.add_argument("key")
    knowledge_upsert.add_argument("content")
    knowledge_upsert.add_argument("--data", "-d", help="Structured data as a JSON object")

    # lore knowledge contradict TYPE KEY CONTENT
    knowledge_contradict = knowledge_sub.add_parser(
        "contradict", help="Weaken a record with contradicting evidence"
    )
    knowledge_contradict.add_argument("type", choices=KNOWLEDGE_TYPE_CHOICES)
    knowledge_contradict.add_argument("key")
    knowledge_contradict.add_argument("content")

    # context
    p_context = subparsers.add_parser("context", help="Print the prompt context block")
    p_context.add_argument("--digest-file", "-f", help="Platform digest (JSON or prose)")
    p_context.add_argument("--author", "-a", help="Author hash of the request")
    p_context.add_argument("--community", "-c", help="Community of the request")
    p_context.add_argument("--topic", "-t", action="append", help="Topic (repeatable)")

    # reflect
    p_reflect = subparsers.add_parser("reflect", help="Reflect on a cycle's events")
    p_reflect.add_argument("--events", "-e", required=True, help="Cycle events JSON file")
    p_reflect.add_argument(
        "--force", action="store_true", help="Reflect even on an empty cycle"
    )
    p_reflect.add_argument("--json", "-j", action="store_true")

    # maintain
    p_maintain = subparsers.add_parser("maintain", help="Decay and prune knowledge")
    p_maintain.add_argument("--stale-days", type=int, help="Days without evidence before decay")
    p_maintain.add_argument("--min-confidence", type=float, help="Prune below this confidence")

    # reflections
    p_reflections = subparsers.add_parser("reflections", help="Show recent reflections")
    p_reflections.add_argument("--limit", "-l", type=int, default=10)
    p_reflections.add_argument("--json", "-j", action="store_true")

    # stats
    p_stats = subparsers.add_parser("stats", help="Knowledge counts per type")
    p_stats.add_argument("--json", "-j", action="store_true")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    setup_lore_logging(level="DEBUG" if args.verbose else "INFO")

    try:
        storage = SQLiteStorage(db_path=Path(args.db) if args.db else None)
    except Exception as e:
        logger.error(f"Failed to open storage: {e}")
        sys.exit(1)

    # Dispatch with error handling
    try:
        if args.command == "knowledge":
            cmd_knowledge(args, storage)
        elif args.command == "context":
            cmd_context(args, storage)
        elif args.command == "reflect":
            cmd_reflect(args, storage)
        elif args.command == "maintain":
            cmd_maintain(args, storage)
        elif args.command == "reflections":
            cmd_reflections(args, storage)
        elif args.command == "stats":
            cmd_stats(args, storage)
    except (ValueError, TypeError) as e:
        logger.error(f"Input validation error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)
    finally:
        storage.close()


if __name__ == "__main__":
    main()
