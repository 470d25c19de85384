import logging
from typing import Any, Dict, Generator, List

from tqdm import tqdm

logger = logging.getLogger(__name__)

# Layer statuses that mean the layer needs no more work
_DONE_STATUSES = ("Pull complete", "Already exists")


class PullProgress:
    """
    Consumes engine pull events and shows per-layer progress.

    A tqdm bar counts finished layers; its total grows as the engine
    announces new layers. Status changes are logged at DEBUG.
    """

    def __init__(
        self,
        generator: Generator[Dict[str, Any], None, None],
        image: str,
        show: bool = True,
    ) -> None:
        self.generator = generator
        self.image = image
        self.show = show
        # Latest event per layer id
        self.layers: Dict[str, Dict[str, Any]] = {}

    def consume(self) -> List[Dict[str, Any]]:
        """Drain the generator and return the collected events."""
        events: List[Dict[str, Any]] = []
        with tqdm(
            total=0, desc=self.image, unit="layer", disable=not self.show, leave=False
        ) as bar:
            for event in self.generator:
                events.append(event)
                self._handle_event(event, bar)
        return events

    def _handle_event(self, event: Dict[str, Any], bar: tqdm) -> None:
        status = event.get("status")
        if not status:
            return

        layer_id = event.get("id")
        # "Pulling from <repo>" carries the tag as its id, not a layer
        if not layer_id or status.startswith("Pulling from"):
            logger.debug(status)
            return

        previous = self.layers.get(layer_id)
        if previous is None:
            bar.total += 1
            bar.refresh()

        prev_status = previous.get("status") if previous else None
        # Only log status changes, not every download percentage
        if status != prev_status:
            logger.debug("%s: %s", layer_id, status)
            if status in _DONE_STATUSES and prev_status not in _DONE_STATUSES:
                bar.update(1)

        self.layers[layer_id] = event

    @property
    def completed_layers(self) -> int:
        return sum(
            1 for event in self.layers.values() if event.get("status") in _DONE_STATUSES
        )
