import pytest

from policyfold.core.runtime import (
    ConversionContext,
    ObjectRemovedEvent,
    PolicyRenamedEvent,
    PolicySplitEvent,
)
from policyfold.utils.json_safe import to_jsonable


def test_context_records_events_in_order_and_returns_immutable_views():
    ctx = ConversionContext(operation_name="test")

    e1 = PolicyRenamedEvent(policy_id="B2C_1_a", new_policy_id="B2C_1A_a")
    e2 = ObjectRemovedEvent(object_type="ClaimType", object_id="x")
    ctx.emit_event(e1).emit_event(e2)

    events = ctx.get_events()
    assert events == (e1, e2)
    assert isinstance(events, tuple)
    assert ctx.events_of(ObjectRemovedEvent) == [e2]
    assert ctx.event_counts() == {"PolicyRenamedEvent": 1, "ObjectRemovedEvent": 1}


def test_context_rejects_non_events():
    ctx = ConversionContext()

    with pytest.raises(TypeError):
        ctx.emit_event({"event_type": "fake"})


def test_event_payload_is_json_safe():
    event = PolicySplitEvent(
        original_policy_id="B2C_1A_big",
        final_policy_id="B2C_1A_big_3",
        fork_policy_ids=("B2C_1A_big_1", "B2C_1A_big_2"),
        size_bytes=900,
    )

    payload = event.to_payload()

    assert payload["event_type"] == "PolicySplitEvent"
    assert payload["fork_policy_ids"] == ["B2C_1A_big_1", "B2C_1A_big_2"]
    assert isinstance(payload["event_id"], str)
    assert to_jsonable(event) == payload


def test_events_are_frozen():
    event = PolicyRenamedEvent(policy_id="a", new_policy_id="B2C_1A_a")

    with pytest.raises(Exception):
        event.policy_id = "b"
