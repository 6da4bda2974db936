"""Tests for the MQTT bridge."""

import json
import pytest
from unittest.mock import MagicMock, patch

from factory_agents_sim.config import Config, MQTTConfig
from factory_agents_sim.mqtt_bridge import (
    MQTTBridge,
    Message,
    command_topic,
    parse_command_topic,
)
from factory_agents_sim.randomness import ScriptedRandom
from factory_agents_sim.state import SimulationState


def fake_msg(topic, payload=b"{}"):
    msg = MagicMock()
    msg.topic = topic
    msg.payload = payload
    return msg


def drain(bridge):
    messages = []
    while not bridge._publish_queue.empty():
        messages.append(bridge._publish_queue.get_nowait())
    return messages


class TestMQTTBridge:
    """Tests for MQTTBridge."""

    @pytest.fixture
    def mqtt_config(self):
        return MQTTConfig(
            broker="localhost",
            port=1883,
            client_id="test-client",
            topic_prefix="factory-ai/test",
        )

    @pytest.fixture
    def bridge(self, mqtt_config):
        return MQTTBridge(mqtt_config)

    def test_base_topic(self, bridge):
        assert bridge.base_topic == "factory-ai/test"

    def test_publish_dropped_when_disconnected(self, bridge):
        assert bridge.publish("_event", {"id": "x"}) is False
        assert bridge.stats["messages_dropped"] == 1

    def test_publish_state_topics(self, bridge):
        bridge._connected = True
        state = SimulationState(Config.default(), now=0, rand=ScriptedRandom())

        bridge.publish_state(state.snapshot())

        messages = drain(bridge)
        topics = [m.topic for m in messages]
        assert "factory-ai/test/F1/F1-M1/_state" in topics
        assert "factory-ai/test/F3/F3-M3/_state" in topics
        assert "factory-ai/test/_agents" in topics
        assert len(messages) == 10
        assert all(m.retain for m in messages)

        machine_msg = next(m for m in messages if m.topic.endswith("F1-M1/_state"))
        assert machine_msg.payload["status"] == "NORMAL"
        assert machine_msg.payload["reading"]["temperature"] == 45.0

    def test_publish_event(self, bridge):
        bridge._connected = True

        bridge.publish_event({"id": "abc", "kind": "ACTION"})

        (msg,) = drain(bridge)
        assert msg.topic == "factory-ai/test/_event"
        assert msg.retain is False
        json.dumps(msg.payload)

    def test_command_dispatch(self, bridge):
        handler = MagicMock(return_value=True)
        bridge.on_command = handler

        bridge._on_message(None, None, fake_msg(command_topic("machines", "F1-M1", "power_off")))

        handler.assert_called_once_with("machines", "F1-M1", "power_off")
        assert bridge.stats["commands_received"] == 1

    def test_malformed_topic_ignored(self, bridge):
        handler = MagicMock()
        bridge.on_command = handler

        bridge._on_message(None, None, fake_msg("factory-agents-sim/commands/machines/F1-M1"))

        handler.assert_not_called()

    def test_handler_error_is_contained(self, bridge):
        bridge.on_command = MagicMock(side_effect=RuntimeError("boom"))

        bridge._on_message(None, None, fake_msg(command_topic("agents", "THERMAL", "toggle")))

    def test_command_outcome_published_as_status(self, bridge):
        bridge._connected = True
        bridge.on_command = MagicMock(return_value=False)

        bridge._on_message(None, None, fake_msg(command_topic("machines", "F9-M9", "restart")))

        (msg,) = drain(bridge)
        assert msg.topic == MQTTBridge.STATUS_TOPIC
        assert msg.retain is True
        assert msg.payload["commands_received"] == 1
        assert msg.payload["last_command"] == {
            "target": "machines",
            "target_id": "F9-M9",
            "action": "restart",
            "outcome": "rejected",
        }

    def test_handler_error_recorded_in_stats(self, bridge):
        bridge.on_command = MagicMock(side_effect=RuntimeError("boom"))

        bridge._on_message(None, None, fake_msg(command_topic("agents", "THERMAL", "toggle")))

        assert bridge.stats["last_command"]["outcome"] == "error"
        assert drain(bridge) == []

    def test_dry_run_connect(self, bridge):
        result = bridge.connect(dry_run=True)

        assert result is True
        assert bridge.connected is True
        bridge.disconnect()

    def test_dry_run_disconnect(self, bridge):
        bridge.connect(dry_run=True)
        bridge.disconnect()

        assert bridge.connected is False

    def test_do_publish_counts_success(self, bridge):
        bridge._client = MagicMock()
        bridge._client.publish.return_value.rc = 0
        bridge._connected = True

        bridge._do_publish(Message(topic="t", payload={"a": 1}))

        bridge._client.publish.assert_called_once_with("t", '{"a": 1}', qos=1, retain=False)
        assert bridge.stats["messages_published"] == 1

    def test_connect_failure_returns_false(self, bridge):
        with patch("factory_agents_sim.mqtt_bridge.mqtt.Client") as client_cls:
            client_cls.return_value.connect.side_effect = OSError("refused")

            assert bridge.connect() is False


class TestCommandTopics:
    """Tests for command topic helpers."""

    def test_round_trip(self):
        topic = command_topic("agents", "ENERGY", "restart")

        assert topic == "factory-agents-sim/commands/agents/ENERGY/restart"
        assert parse_command_topic(topic) == ("agents", "ENERGY", "restart")

    @pytest.mark.parametrize(
        "topic",
        [
            "factory-agents-sim/status",
            "factory-agents-sim/commands/robots/R1/toggle",
            "factory-agents-sim/commands/agents//toggle",
            "factory-agents-sim/commands/agents/THERMAL/toggle/extra",
            "other/commands/agents/THERMAL/toggle",
        ],
    )
    def test_rejects_malformed(self, topic):
        assert parse_command_topic(topic) is None


class TestMessage:
    """Tests for Message dataclass."""

    def test_message_defaults(self):
        msg = Message(topic="test", payload={"value": 1})

        assert msg.retain is False
        assert msg.qos == 1
