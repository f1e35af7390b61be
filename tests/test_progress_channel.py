from streamprep.domain.progress import ProgressEvent, ProgressStage
from streamprep.services.progress_channel import ProgressChannel
from streamprep.services.progress_gateway import ProgressGateway


def _event(percent, stage=ProgressStage.ENCODING):
    return ProgressEvent(video_id="v1", stage=stage, overall_progress=percent)


def test_events_before_subscription_are_not_replayed():
    channel = ProgressChannel()
    channel.publish("job1", "u1", _event(35))

    received = []
    channel.subscribe_to_job("job1", received.append)
    channel.publish("job1", "u1", _event(40))
    channel.publish("job1", "u1", _event(50))

    assert [e.overall_progress for e in received] == [40, 50]


def test_publish_reaches_job_and_user_subscribers_only():
    channel = ProgressChannel()
    job_events, user_events, other = [], [], []
    channel.subscribe_to_job("job1", job_events.append)
    channel.subscribe_to_user("u1", user_events.append)
    channel.subscribe_to_job("job2", other.append)
    channel.subscribe_to_user("u2", other.append)

    assert channel.publish("job1", "u1", _event(60)) == 2
    assert len(job_events) == len(user_events) == 1
    assert other == []


def test_failing_subscriber_does_not_block_others():
    channel = ProgressChannel()
    received = []

    def broken(event):
        raise RuntimeError("socket closed")

    channel.subscribe_to_job("job1", broken)
    channel.subscribe_to_job("job1", received.append)
    channel.publish("job1", "u1", _event(70))

    assert len(received) == 1


def test_unsubscribe_is_idempotent():
    channel = ProgressChannel()
    received = []
    unsubscribe = channel.subscribe_to_job("job1", received.append)
    unsubscribe()
    unsubscribe()
    channel.publish("job1", "u1", _event(80))

    assert received == []
    assert channel.subscriber_count() == 0


def test_wire_payload_omits_unset_fields():
    payload = ProgressEvent(
        video_id="v1", stage=ProgressStage.ERROR, overall_progress=0, error="boom", timestamp=1700000000000
    ).to_wire()

    assert payload == {
        "videoId": "v1",
        "stage": "error",
        "overallProgress": 0,
        "error": "boom",
        "timestamp": 1700000000000,
    }


def test_gateway_relays_events_to_joined_connections():
    channel = ProgressChannel()
    sent = []
    gateway = ProgressGateway(channel, lambda conn, name, payload: sent.append((conn, name, payload)))

    gateway.connect("c1")
    gateway.connect("c2")
    gateway.join_job("c1", "job1")
    gateway.join_user("c2", "u1")
    sent.clear()

    channel.publish("job1", "u1", _event(90, ProgressStage.FINALIZING))

    assert [(conn, name) for conn, name, _ in sent] == [("c1", "upload-progress"), ("c2", "user-upload-progress")]
    assert sent[0][2]["stage"] == "finalizing"
    assert gateway.connected_count() == 2
    assert gateway.active_jobs() == ["job1"]


def test_gateway_disconnect_drops_subscriptions():
    channel = ProgressChannel()
    sent = []
    gateway = ProgressGateway(channel, lambda conn, name, payload: sent.append(name))
    gateway.connect("c1")
    gateway.join_job("c1", "job1")
    gateway.join_user("c1", "u1")

    gateway.disconnect("c1")
    sent.clear()
    channel.publish("job1", "u1", _event(95))

    assert sent == []
    assert gateway.connected_count() == 0
    assert channel.subscriber_count() == 0


def test_gateway_leave_job_stops_delivery():
    channel = ProgressChannel()
    sent = []
    gateway = ProgressGateway(channel, lambda conn, name, payload: sent.append(name))
    gateway.connect("c1")
    gateway.join_job("c1", "job1")
    gateway.leave_job("c1", "job1")
    gateway.leave_job("c1", "job1")
    sent.clear()

    channel.publish("job1", "u1", _event(50))
    assert sent == []
    assert gateway.active_jobs() == []
