from __future__ import annotations

import dataclasses

import pytest

from webhook_bridge.events import InboundMessage


def test_inbound_message_is_immutable():
    props = {"k": "v"}
    msg = InboundMessage(payload=b"{}", user_properties=props)

    with pytest.raises(dataclasses.FrozenInstanceError):
        msg.payload = b"x"
    with pytest.raises(TypeError):
        msg.user_properties["k"] = "changed"

    # later changes to the source mapping do not leak in
    props["k"] = "changed"
    assert msg.user_properties["k"] == "v"


def test_dump_contains_metadata_and_payload():
    msg = InboundMessage(
        payload=b'{"id":42}',
        user_properties={"X-Custom": "abc"},
        reply_to="reply/1",
        application_message_id="app-1",
        destination="orders/new",
    )
    text = msg.dump()
    assert "orders/new" in text
    assert "reply/1" in text
    assert "app-1" in text
    assert "X-Custom: abc" in text
    assert '{"id":42}' in text


def test_dump_binary_payload_as_hex():
    assert "fffe" in InboundMessage(payload=b"\xff\xfe").dump()
