import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from status import IndexStatus, RunState, StatusChannel, StatusMessage


def test_initial_status_idle():
    channel = StatusChannel()
    assert channel.latest.state == RunState.IDLE
    assert channel.latest.message == StatusMessage.IDLE
    assert not channel.latest.is_processing


def test_is_processing_for_busy_states():
    for state in (RunState.INITIALIZING, RunState.SCANNING, RunState.PROCESSING, RunState.FINALIZING):
        assert IndexStatus(state, StatusMessage.PROCESSING).is_processing
    for state in (RunState.IDLE, RunState.COMPLETE, RunState.ERROR):
        assert not IndexStatus(state, StatusMessage.IDLE).is_processing


def test_to_dict_uses_message_codes():
    data = IndexStatus(RunState.PROCESSING, StatusMessage.PROCESSING, 3, 10).to_dict()
    assert data == {
        "state": "processing",
        "message": "index_status_processing",
        "processed": 3,
        "total": 10,
        "is_processing": True,
    }


def test_publish_delivers_in_order():
    channel = StatusChannel()
    seen = []
    channel.subscribe(seen.append)
    a = IndexStatus(RunState.SCANNING, StatusMessage.FINDING_FILES)
    b = IndexStatus(RunState.PROCESSING, StatusMessage.PROCESSING, 0, 2)
    channel.publish(a)
    channel.publish(b)
    assert seen == [a, b]
    assert channel.latest == b


def test_unsubscribe():
    channel = StatusChannel()
    seen = []
    unsubscribe = channel.subscribe(seen.append)
    unsubscribe()
    unsubscribe()
    channel.publish(IndexStatus(RunState.COMPLETE, StatusMessage.COMPLETE))
    assert seen == []


def test_failing_subscriber_does_not_block_others():
    channel = StatusChannel()
    seen = []

    def broken(_status):
        raise RuntimeError("subscriber bug")

    channel.subscribe(broken)
    channel.subscribe(seen.append)
    status = IndexStatus(RunState.ERROR, StatusMessage.ERROR)
    channel.publish(status)
    assert seen == [status]
    assert channel.latest == status
