"""Domain-specific event broadcasting layer.

Provides semantic event methods on top of the event bus, so job and scan
code never builds raw payloads.
"""

from mergebox.services.event_bus import EventBus

LOG_EVENT = "log"
CATEGORY_UPDATED_EVENT = "category_updated"


class EventBroadcaster:
    """Domain-specific event publishing."""

    def __init__(self, bus: EventBus):
        self._bus = bus

    # --- Job Output ---

    def broadcast_log(self, channel: str, message: str) -> None:
        """Publish a chunk of job output on a channel."""
        self._bus.publish(LOG_EVENT, {"channel": channel, "message": message})

    def broadcast_job_line(self, channel: str, line: str) -> None:
        """Publish one line of ffmpeg output."""
        self.broadcast_log(channel, f"{line}\n")

    def broadcast_job_status(self, channel: str, status: str) -> None:
        """Publish a status line set apart from the surrounding output."""
        self.broadcast_log(channel, f"\n{status}\n")

    # --- Scan Events ---

    def broadcast_category_updated(
        self, category_id: str, merge_groups: int, remux_groups: int
    ) -> None:
        """Announce a fresh snapshot for a category."""
        self._bus.publish(
            CATEGORY_UPDATED_EVENT,
            {
                "category": category_id,
                "merge_groups": merge_groups,
                "remux_groups": remux_groups,
            },
        )
