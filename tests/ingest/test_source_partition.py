# tests/ingest/test_source_partition.py
import pytest

from psmf.core.types import EndMarker, Rating
from psmf.ingest.source import SourcePartition, split_sources


class RecordingWorker:
    def __init__(self, index):
        self.index = index
        self.records = []

    def on_record(self, data):
        self.records.append(data)


def test_ratings_routed_by_user_then_markers_to_every_worker():
    workers = [RecordingWorker(i) for i in range(3)]
    source = SourcePartition(1, [Rating(4, 1, 1.0), Rating(3, 2, 2.0), Rating(5, 1, 3.0)])

    sent = source.run(workers)

    assert sent == 3
    assert workers[0].records == [Rating(3, 2, 2.0), EndMarker(0, 1)]
    assert workers[1].records == [Rating(4, 1, 1.0), EndMarker(1, 1)]
    assert workers[2].records == [Rating(5, 1, 3.0), EndMarker(2, 1)]


def test_empty_source_still_signals_completion():
    workers = [RecordingWorker(i) for i in range(2)]

    assert SourcePartition(0, []).run(workers) == 0
    assert workers[0].records == [EndMarker(0, 0)]
    assert workers[1].records == [EndMarker(1, 0)]


def test_split_sources_round_robin():
    ratings = [Rating(u, 0, 1.0) for u in range(5)]

    sources = split_sources(ratings, 2)

    assert [s.index for s in sources] == [0, 1]
    assert [r.user_id for r in sources[0].ratings] == [0, 2, 4]
    assert [r.user_id for r in sources[1].ratings] == [1, 3]


def test_split_sources_more_sources_than_ratings():
    sources = split_sources([Rating(1, 1, 1.0)], 3)

    assert [len(s.ratings) for s in sources] == [1, 0, 0]


def test_split_sources_rejects_zero():
    with pytest.raises(ValueError):
        split_sources([], 0)
