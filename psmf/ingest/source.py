# psmf/ingest/source.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence

from psmf import logs
from psmf.core.types import EndMarker, Rating
from psmf.server.partitioner import route_user


@dataclass
class SourcePartition:
    """
    One upstream read partition.

    Contract: route every rating to worker `user_id % worker_parallelism`,
    then, once exhausted, send one EndMarker(w, index) to EVERY worker w,
    including workers that got no rating from this source.
    """

    index: int
    ratings: Sequence[Rating] = field(default_factory=list)

    def run(self, workers: Sequence) -> int:
        n = len(workers)
        sent = 0

        for rating in self.ratings:
            workers[route_user(rating.user_id, n)].on_record(rating)
            sent += 1

        if sent == 0:
            # still signal completion, otherwise the barrier never fires
            logs.warning(f"[Source {self.index}] nothing to read from this source")

        for w in range(n):
            workers[w].on_record(EndMarker(w, self.index))

        logs.info(f"[Source {self.index}] exhausted ratings={sent} markers={n}")
        return sent


def split_sources(ratings: Sequence[Rating], read_parallelism: int) -> List[SourcePartition]:
    """Round-robin deal of ratings into read_parallelism source partitions."""
    if read_parallelism <= 0:
        raise ValueError(f"read_parallelism must be positive, got {read_parallelism}")

    ratings = list(ratings)
    return [
        SourcePartition(i, list(ratings[i::read_parallelism]))
        for i in range(read_parallelism)
    ]
