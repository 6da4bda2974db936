"""Command-line interface for the Factory Agents Simulator."""

import logging
import signal
import sys
import time
from pathlib import Path

import click

from . import __version__
from .config import Config
from .errors import ConfigError
from .models import AgentType
from .mqtt_bridge import MQTTBridge, command_topic
from .randomness import SeededRandom
from .scheduler import ManualScheduler
from .simulator import Simulator

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

MACHINE_ACTIONS = ["force_anomaly", "power_off", "restart"]
AGENT_ACTIONS = ["toggle", "restart"]


def _load_config(config_path, seed) -> Config:
    config = Config.from_yaml(config_path) if config_path else Config.default()
    config = Config.from_env(base=config)
    if seed is not None:
        config.simulation.random_seed = seed
    return config


@click.group()
@click.version_option(version=__version__)
def main():
    """Factory Agents Simulator - fleet telemetry with autonomous recovery agents.

    Simulates 3 factories x 3 machines whose temperature, vibration and
    power usage drift every tick. Breaches and spontaneous anomalies turn a
    machine CRITICAL; the THERMAL, KINETIC and ENERGY agents drive it back
    to NORMAL, but only while every agent the breach needs is active.
    """
    pass


@main.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="YAML config file",
)
@click.option("--broker", "-b", default=None, help="MQTT broker address")
@click.option("--port", "-p", type=int, default=None, help="MQTT broker port")
@click.option("--seed", type=int, default=None, help="Random seed")
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Do not connect to MQTT, log publications instead",
)
@click.option(
    "--no-mqtt",
    is_flag=True,
    default=False,
    help="Run without any MQTT bridge",
)
def run(config_path, broker, port, seed, dry_run, no_mqtt):
    """Start the simulator in real time until interrupted."""
    try:
        config = _load_config(config_path, seed)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if broker:
        config.mqtt.broker = broker
    if port:
        config.mqtt.port = port

    bridge = None if no_mqtt else MQTTBridge(config.mqtt)
    simulator = Simulator(config, publisher=bridge)

    stop_requested = []

    def handle_signal(signum, frame):
        stop_requested.append(signum)

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    if not simulator.start(dry_run=dry_run):
        sys.exit(1)

    try:
        while not stop_requested:
            time.sleep(0.5)
    finally:
        simulator.stop()
        summary = simulator.fleet_summary()
        click.echo(f"Stopped after {simulator.state.tick_count} ticks: {summary}")


@main.command()
@click.option("--ticks", "-n", type=click.IntRange(min=1), default=30, help="Ticks to run")
@click.option("--seed", type=int, default=None, help="Random seed")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="YAML config file",
)
@click.option(
    "--disable-agent",
    "disabled_agents",
    multiple=True,
    type=click.Choice([t.value for t in AgentType], case_sensitive=False),
    help="Deactivate an agent before the run (repeatable)",
)
@click.option(
    "--force-anomaly",
    "forced_machines",
    multiple=True,
    help="Machine id to force into an anomaly before the run (repeatable)",
)
@click.option("--limit", type=int, default=20, help="Log entries to print")
def simulate(ticks, seed, config_path, disabled_agents, forced_machines, limit):
    """Run a headless simulation on virtual time and print the results."""
    try:
        config = _load_config(config_path, seed)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    scheduler = ManualScheduler(start_ms=int(time.time() * 1000))
    simulator = Simulator(
        config,
        scheduler=scheduler,
        rand=SeededRandom(config.simulation.random_seed),
    )
    for agent in disabled_agents:
        simulator.toggle_agent(agent)
    for machine_id in forced_machines:
        if not simulator.force_anomaly(machine_id):
            click.echo(f"Could not force anomaly on {machine_id}", err=True)

    simulator.start()
    scheduler.run_ticks(ticks)
    simulator.stop()

    snapshot = simulator.snapshot()
    click.echo(f"Ran {snapshot['tick']} ticks")
    click.echo("=" * 40)
    for factory in snapshot["factories"]:
        click.echo(f"{factory['name']} ({factory['location']})")
        for machine in factory["machines"]:
            reading = machine["current_reading"]
            click.echo(
                f"  {machine['id']:<6} {machine['status']:<9} "
                f"T={reading['temperature']:>6.2f} "
                f"V={reading['vibration']:>6.2f} "
                f"P={reading['power_usage']:>6.2f}"
            )
    click.echo()
    click.echo("Agents:")
    for agent in snapshot["agents"]:
        state = "ACTIVE" if agent["is_active"] else "OFFLINE"
        click.echo(f"  {agent['id']:<8} {state:<7} load={agent['load']}%")
    click.echo()
    click.echo(f"Summary: {simulator.fleet_summary()}")
    click.echo()
    click.echo(f"Event log (newest first, {limit} shown):")
    for entry in snapshot["logs"][:limit]:
        line = f"  [{entry['timestamp']}] {entry['kind']:<8} {entry['machine_id']:<6} {entry['message']}"
        if entry["reasoning"]:
            line += f" ({entry['reasoning']})"
        click.echo(line)


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=Path("config"),
    help="Output directory for config files",
)
def init(output):
    """Generate a sample configuration file."""
    output.mkdir(parents=True, exist_ok=True)

    cfg = Config.default()
    config_path = output / "config.yaml"
    cfg.to_yaml(config_path)

    click.echo(f"Created: {config_path}")
    click.echo()
    click.echo("Edit the config file to customize:")
    click.echo("  - MQTT broker settings")
    click.echo("  - Tick interval, history and recovery timing")
    click.echo("  - Thresholds and factories")
    click.echo()
    click.echo(f"Run with: factory-agents-sim run --config {config_path}")


@main.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="YAML config file",
)
def status(config_path):
    """Show the simulation constants in effect."""
    try:
        config = Config.from_yaml(config_path) if config_path else Config.default()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    sim = config.simulation

    click.echo("Factory Agents Simulator")
    click.echo("=" * 40)
    click.echo(f"Tick interval:      {sim.tick_interval_ms} ms")
    click.echo(f"History limit:      {sim.history_limit} readings")
    click.echo(f"Recovery duration:  {sim.recovery_duration_ms} ms")
    click.echo(f"Agent restart:      {sim.agent_restart_delay_ms} ms")
    click.echo(f"Log capacity:       {sim.log_capacity} events")
    click.echo(f"Anomaly chance:     {sim.anomaly_probability:.3f} per machine/tick")
    click.echo(
        f"Thresholds:         T>{config.thresholds.temperature:g} "
        f"V>{config.thresholds.vibration:g} P>{config.thresholds.power_usage:g}"
    )
    click.echo()
    click.echo(f"Factories ({config.machine_count} machines):")
    for factory in config.factories:
        click.echo(f"  {factory.id}: {factory.name} - {factory.location} ({', '.join(factory.machine_ids())})")
    click.echo()
    click.echo("Command topics:")
    click.echo(f"  {command_topic('agents', '{THERMAL|KINETIC|ENERGY}', '{toggle|restart}')}")
    click.echo(f"  {command_topic('machines', '{machine_id}', '{force_anomaly|power_off|restart}')}")


@main.command()
@click.option("--broker", "-b", default="localhost", help="MQTT broker address")
@click.option("--port", "-p", type=int, default=1883, help="MQTT broker port")
@click.argument("target", type=click.Choice(["agent", "machine"]))
@click.argument("target_id")
@click.argument("action", type=click.Choice(sorted(set(MACHINE_ACTIONS + AGENT_ACTIONS))))
def command(broker, port, target, target_id, action):
    """Send an operator command to a running simulator via MQTT.

    \b
    Examples:
      factory-agents-sim command agent THERMAL toggle
      factory-agents-sim command machine F1-M2 force_anomaly
    """
    import paho.mqtt.client as mqtt

    allowed = AGENT_ACTIONS if target == "agent" else MACHINE_ACTIONS
    if action not in allowed:
        click.echo(f"Error: '{action}' is not a valid {target} action ({', '.join(allowed)})", err=True)
        sys.exit(2)
    if target == "agent":
        target_id = target_id.upper()

    topic = command_topic(f"{target}s", target_id, action)
    client = mqtt.Client(callback_api_version=mqtt.CallbackAPIVersion.VERSION2)

    try:
        client.connect(broker, port)
        result = client.publish(topic, "{}", qos=1)
        result.wait_for_publish()
        client.disconnect()

        click.echo(f"Sent {action} to {target} {target_id}")
        click.echo(f"  Topic: {topic}")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
