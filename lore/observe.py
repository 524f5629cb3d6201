"""In-memory cycle event collection.

A collector is created at the start of a cycle, passed explicitly through
the cycle's call chain, and handed to reflection once at the end. Nothing
is written to storage while the cycle runs.
"""

from dataclasses import replace

from lore.types import CycleEvents, NotableInteraction

# Notable interactions kept per cycle; later ones are dropped
MAX_NOTABLE_INTERACTIONS = 20


def create_cycle_collector() -> CycleEvents:
    """Create a zeroed collector for a new cycle."""
    return CycleEvents()


def record_notable_interaction(collector: CycleEvents, interaction: NotableInteraction) -> bool:
    """Append an interaction while the cycle has room for it.

    Returns:
        True if recorded, False if the cap was already reached.
    """
    if len(collector.notable_interactions) >= MAX_NOTABLE_INTERACTIONS:
        return False
    collector.notable_interactions.append(interaction)
    return True


def get_cycle_events(collector: CycleEvents) -> CycleEvents:
    """Return a snapshot that does not alias the live collector."""
    return replace(
        collector,
        notable_interactions=[
            replace(ni, topics=list(ni.topics) if ni.topics is not None else None)
            for ni in collector.notable_interactions
        ],
    )


def should_reflect(events: CycleEvents) -> bool:
    """A cycle is worth reflecting on if it saw posts or sent replies."""
    return events.posts_discovered > 0 or events.replies_sent > 0
