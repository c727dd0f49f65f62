# tests/worker/test_worker_fifo.py
"""
同一 item 的多个 pull：answer 必须按 FIFO 对应到最早登记的 rating
"""
import numpy as np
import pytest

from psmf.core.types import Rating
from psmf.utils.errors import UnexpectedPullAnswerError
from psmf.worker.worker import WorkerState


def test_answers_match_oldest_rating_for_the_item(make_worker, feed, ordered_policy, eventually):
    worker, client = make_worker(policy=ordered_policy, pull_limit=2)
    feed(worker, [Rating(1, 7, 5.0), Rating(2, 7, 3.0)])

    assert eventually(lambda: client.num_pulls() == 2)
    assert [item for item, _ in client.pulls] == [7, 7]

    # positional matching: no request ids
    worker.on_pull_answer(7, np.array([1.0, 0.0]))
    worker.on_pull_answer(7, np.array([1.0, 0.0]))

    assert [r.key for r in client.outputs] == [1, 2]
    # zero user vectors: Δu = η·r·v
    np.testing.assert_allclose(worker.user_vectors[1], [0.5, 0.0])
    np.testing.assert_allclose(worker.user_vectors[2], [0.3, 0.0])
    assert worker.join(timeout=1) is True


def test_request_ids_follow_issue_order(make_worker, feed, ordered_policy, eventually):
    worker, client = make_worker(policy=ordered_policy, pull_limit=3)
    feed(worker, [Rating(1, 7, 5.0), Rating(2, 8, 3.0), Rating(3, 7, 1.0)])

    assert eventually(lambda: client.num_pulls() == 3)
    assert [rid for _, rid in client.pulls] == [0, 1, 2]


def test_out_of_order_answer_is_detected(make_worker, feed, ordered_policy, eventually):
    worker, client = make_worker(policy=ordered_policy, pull_limit=2)
    feed(worker, [Rating(1, 7, 5.0), Rating(2, 7, 3.0)])
    assert eventually(lambda: client.num_pulls() == 2)

    _, second = client.pull_at(1)
    with pytest.raises(UnexpectedPullAnswerError, match="out-of-order"):
        worker.on_pull_answer(7, np.array([1.0, 0.0]), second)

    assert worker.state is WorkerState.FAILED
    assert client.outputs == []
    assert client.pushes == []


def test_answer_for_item_without_pending_pull(make_worker, feed, ordered_policy, eventually):
    worker, client = make_worker(policy=ordered_policy, pull_limit=2)
    feed(worker, [Rating(1, 7, 5.0)])
    assert eventually(lambda: client.num_pulls() == 1)

    with pytest.raises(UnexpectedPullAnswerError):
        worker.on_pull_answer(8, np.array([1.0, 0.0]))


def test_answer_before_any_pull(make_worker):
    worker, _ = make_worker(read_parallelism=2)

    with pytest.raises(UnexpectedPullAnswerError):
        worker.on_pull_answer(1, np.array([1.0, 0.0]))


def test_answers_after_abort_are_dropped(make_worker, feed, ordered_policy, eventually):
    worker, client = make_worker(policy=ordered_policy, pull_limit=2)
    feed(worker, [Rating(1, 7, 5.0), Rating(2, 8, 3.0)])
    assert eventually(lambda: client.num_pulls() == 2)

    with pytest.raises(UnexpectedPullAnswerError):
        worker.on_pull_answer(9, np.zeros(2))

    item_id, request_id = client.pull_at(0)
    worker.on_pull_answer(item_id, np.zeros(2), request_id)
    assert client.pushes == []


def test_per_rating_pushes_item_delta_and_emits_user(make_worker, feed, eventually):
    worker, client = make_worker(pull_limit=1)
    feed(worker, [Rating(4, 2, 1.0)])
    assert eventually(lambda: client.num_pulls() == 1)

    worker.on_pull_answer(2, np.array([1.0, 0.0]), 0)

    assert len(client.pushes) == 1
    item_id, delta = client.pushes[0]
    assert item_id == 2
    # u = 0 → Δv = η·e·u = 0
    np.testing.assert_allclose(delta, [0.0, 0.0])

    assert len(client.outputs) == 1
    record = client.outputs[0]
    assert (record.kind, record.key) == ("user", 4)
    np.testing.assert_allclose(record.vector, [0.1, 0.0])


def test_bad_answer_vector_fails_worker_and_wakes_producer(make_worker, feed, ordered_policy, eventually):
    worker, client = make_worker(policy=ordered_policy, pull_limit=1)
    feed(worker, [Rating(1, 10, 5.0), Rating(2, 20, 3.0)])
    assert eventually(lambda: client.num_pulls() == 1)

    item_id, request_id = client.pull_at(0)
    with pytest.raises(ValueError):
        worker.on_pull_answer(item_id, np.zeros(3), request_id)

    assert worker.state is WorkerState.FAILED
    with pytest.raises(ValueError):
        worker.join(timeout=1)

    # producer blocked at pull_limit returns instead of issuing the second pull
    worker.training_future.result(timeout=5)
    assert client.num_pulls() == 1


def test_failing_push_fails_worker(make_worker, feed, ordered_policy, eventually):
    worker, client = make_worker(policy=ordered_policy, pull_limit=1)

    def _push(item_id, delta):
        raise ConnectionError("server gone")

    client.push = _push
    feed(worker, [Rating(1, 10, 5.0), Rating(2, 20, 3.0)])
    assert eventually(lambda: client.num_pulls() == 1)

    item_id, request_id = client.pull_at(0)
    with pytest.raises(ConnectionError):
        worker.on_pull_answer(item_id, np.array([1.0, 0.0]), request_id)

    assert worker.state is WorkerState.FAILED
    assert isinstance(worker.error, ConnectionError)
    worker.training_future.result(timeout=5)
