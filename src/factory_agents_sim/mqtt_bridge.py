"""MQTT bridge: publishes fleet state and accepts operator commands.

Topics (prefix from ``MQTTConfig.topic_prefix``):

    {prefix}/{factory}/{machine}/_state   retained machine state
    {prefix}/_agents                      retained agent list
    {prefix}/_event                       one message per log event
    factory-agents-sim/status             retained bridge status

Commands are received on the root-level control topics:

    factory-agents-sim/commands/agents/{THERMAL|KINETIC|ENERGY}/{toggle|restart}
    factory-agents-sim/commands/machines/{machine_id}/{force_anomaly|power_off|restart}
"""

import json
import logging
import threading
import time
from dataclasses import dataclass
from queue import Empty, Queue
from typing import Any, Callable, Dict, Optional

import paho.mqtt.client as mqtt

from .config import MQTTConfig

logger = logging.getLogger(__name__)

CommandHandler = Callable[[str, str, str], bool]


@dataclass
class Message:
    """MQTT message to be published."""

    topic: str
    payload: Dict[str, Any]
    retain: bool = False
    qos: int = 1


class MQTTBridge:
    """MQTT client with a publish queue and command subscription."""

    # Control topics - ROOT level (outside the data prefix)
    CONTROL_ROOT = "factory-agents-sim"
    COMMAND_TOPIC = f"{CONTROL_ROOT}/commands/#"
    STATUS_TOPIC = f"{CONTROL_ROOT}/status"

    def __init__(self, mqtt_config: MQTTConfig, on_command: Optional[CommandHandler] = None):
        self.mqtt_config = mqtt_config
        self.on_command = on_command

        self._client: Optional[mqtt.Client] = None
        self._connected = False
        self._publish_queue: Queue[Message] = Queue()
        self._publish_thread: Optional[threading.Thread] = None
        self._running = False
        self._dry_run = False

        # Stats
        self._messages_published = 0
        self._messages_dropped = 0
        self._commands_received = 0
        self._last_command: Optional[Dict[str, Any]] = None

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def base_topic(self) -> str:
        return self.mqtt_config.topic_prefix

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "messages_published": self._messages_published,
            "messages_dropped": self._messages_dropped,
            "commands_received": self._commands_received,
            "last_command": dict(self._last_command) if self._last_command else None,
        }

    def connect(self, dry_run: bool = False) -> bool:
        """Connect to the MQTT broker."""
        self._dry_run = dry_run

        if dry_run:
            logger.info("Dry run mode - not connecting to MQTT broker")
            self._connected = True
            self._start_publish_thread()
            self.publish_status()
            return True

        try:
            self._client = self._build_client()
            logger.info(
                f"Connecting to MQTT broker {self.mqtt_config.broker}:{self.mqtt_config.port}"
            )
            self._client.connect(self.mqtt_config.broker, self.mqtt_config.port)
            self._client.loop_start()

            # Wait for connection
            timeout = 10
            start = time.time()
            while not self._connected and (time.time() - start) < timeout:
                time.sleep(0.1)

            if self._connected:
                self._start_publish_thread()
                self._client.subscribe(self.COMMAND_TOPIC, qos=1)
                logger.info(f"Subscribed to command topic: {self.COMMAND_TOPIC}")
                self.publish_status()

            return self._connected

        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            return False

    def disconnect(self) -> None:
        """Disconnect from the MQTT broker."""
        self._running = False

        if self._publish_thread:
            self._publish_thread.join(timeout=2)

        if self._client and not self._dry_run:
            self._client.loop_stop()
            self._client.disconnect()

        self._connected = False
        logger.info("Disconnected from MQTT broker")

    def publish(self, topic: str, payload: Dict[str, Any], retain: bool = False) -> bool:
        """Queue a message below the data prefix."""
        if not self._connected:
            self._messages_dropped += 1
            return False
        return self.publish_raw(f"{self.base_topic}/{topic}", payload, retain=retain)

    def publish_raw(self, topic: str, payload: Dict[str, Any], retain: bool = False) -> bool:
        """Queue a message on a raw topic (no prefix)."""
        msg = Message(topic=topic, payload=payload, retain=retain, qos=self.mqtt_config.qos)
        self._publish_queue.put(msg)
        return True

    def publish_state(self, snapshot: Dict[str, Any]) -> None:
        """Publish retained machine and agent state from a simulation snapshot."""
        for factory in snapshot.get("factories", []):
            for machine in factory["machines"]:
                payload = {
                    "status": machine["status"],
                    "critical_at": machine["critical_at"],
                    "reading": machine["current_reading"],
                    "factory_name": factory["name"],
                    "tick": snapshot.get("tick", 0),
                }
                self.publish(f"{factory['id']}/{machine['id']}/_state", payload, retain=True)

        self.publish("_agents", {"agents": snapshot.get("agents", [])}, retain=True)

    def publish_event(self, event: Dict[str, Any]) -> None:
        self.publish("_event", event)

    def _start_publish_thread(self) -> None:
        """Start the background publish thread."""
        self._running = True
        self._publish_thread = threading.Thread(target=self._publish_loop, daemon=True)
        self._publish_thread.start()

    def _publish_loop(self) -> None:
        """Background thread that publishes queued messages."""
        while self._running:
            try:
                msg = self._publish_queue.get(timeout=0.1)
                self._do_publish(msg)
            except Empty:
                continue

    def _do_publish(self, msg: Message) -> None:
        """Actually publish a message."""
        payload_str = json.dumps(msg.payload)

        if self._dry_run:
            logger.debug(f"[DRY RUN] {msg.topic}: {payload_str[:100]}")
            self._messages_published += 1
            return

        if self._client and self._connected:
            try:
                result = self._client.publish(
                    msg.topic, payload_str, qos=msg.qos, retain=msg.retain
                )
                if result.rc == mqtt.MQTT_ERR_SUCCESS:
                    self._messages_published += 1
                else:
                    self._messages_dropped += 1
                    logger.warning(f"Failed to publish to {msg.topic}: {result.rc}")
            except Exception as e:
                self._messages_dropped += 1
                logger.error(f"Error publishing to {msg.topic}: {e}")

    def publish_status(self) -> bool:
        """Publish retained bridge counters and the last command outcome."""
        if not self._connected:
            return False
        status = self.stats
        status["topic_prefix"] = self.base_topic
        status["timestamp_ms"] = int(time.time() * 1000)
        return self.publish_raw(self.STATUS_TOPIC, status, retain=True)

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(
            client_id=self.mqtt_config.client_id,
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        )
        if self.mqtt_config.username:
            client.username_pw_set(self.mqtt_config.username, self.mqtt_config.password)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        return client

    def _on_connect(self, client, userdata, flags, rc, properties=None) -> None:
        """Handle connection callback."""
        if rc == 0:
            self._connected = True
            logger.info("Connected to MQTT broker")
        else:
            logger.error(f"Connection failed with code {rc}")

    def _on_disconnect(self, client, userdata, flags, rc, properties=None) -> None:
        """Handle disconnection callback."""
        self._connected = False
        if rc != 0:
            logger.warning(f"Unexpected disconnection (rc={rc})")

    def _on_message(self, client, userdata, msg) -> None:
        """Dispatch a command message to ``on_command``."""
        parsed = parse_command_topic(msg.topic)
        if parsed is None:
            logger.warning(f"Ignoring message on unexpected topic: {msg.topic}")
            return

        self._commands_received += 1
        target, target_id, action = parsed
        if self.on_command is None:
            logger.warning(f"No command handler for {msg.topic}")
            return

        try:
            applied = bool(self.on_command(target, target_id, action))
            outcome = "applied" if applied else "rejected"
        except Exception as e:
            logger.error(f"Error handling command {msg.topic}: {e}")
            outcome = "error"
        else:
            logger.info(f"Command {target}/{target_id}/{action}: {outcome}")

        self._last_command = {
            "target": target,
            "target_id": target_id,
            "action": action,
            "outcome": outcome,
        }
        self.publish_status()


def command_topic(target: str, target_id: str, action: str) -> str:
    """Control topic for one operator command."""
    return f"{MQTTBridge.CONTROL_ROOT}/commands/{target}/{target_id}/{action}"


def parse_command_topic(topic: str) -> Optional[tuple]:
    """Split a command topic into (target, target_id, action)."""
    prefix = f"{MQTTBridge.CONTROL_ROOT}/commands/"
    if not topic.startswith(prefix):
        return None
    parts = topic[len(prefix):].split("/")
    if len(parts) != 3 or not all(parts):
        return None
    target, target_id, action = parts
    if target not in ("agents", "machines"):
        return None
    return target, target_id, action
