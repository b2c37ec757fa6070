"""CLI commands for helibuffer."""

import click


@click.group()
@click.version_option()
def main() -> None:
    """Stream waveform samples through a sliding ring buffer."""
    pass


@main.command()
@click.option("--seconds", "-s", default=120.0, help="Seconds of data to generate")
@click.option("--window", "-w", type=float, default=None, help="Window minutes (overrides config)")
@click.option("--late-every", default=5, help="Deliver every Nth packet late (0 disables)")
@click.option("--delay", default=2, help="Packets a late packet is held back")
@click.option("--seed", default=0, help="Random seed for the noise")
@click.option("--strict", is_flag=True, help="Reject discontinuous patches")
@click.option("--verbose", "-v", is_flag=True, help="Print every promotion")
def simulate(
    seconds: float,
    window: float | None,
    late_every: int,
    delay: int,
    seed: int,
    strict: bool,
    verbose: bool,
) -> None:
    """Run a synthetic stream through a buffer and print its statistics."""
    import math

    from rich.console import Console
    from rich.table import Table

    from helibuffer import logging as hlog
    from helibuffer.config import Config
    from helibuffer.formatting import format_epoch_ms, format_span, format_statistic
    from helibuffer.simulate import SyntheticStream, delivery_order, run_simulation
    from helibuffer.stream import StreamId, StreamRegistry

    try:
        config = Config.load()
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if window is not None:
        if window <= 0:
            click.echo("Error: --window must be > 0", err=True)
            raise SystemExit(1)
        config.buffer.window_minutes = window
    if strict:
        config.patch.policy = "strict"

    hlog.configure(config)

    stream_cfg = config.stream
    stream_id = StreamId(
        stream_cfg.network, stream_cfg.station, stream_cfg.location, stream_cfg.channel
    )

    def on_promote(sid, promoted, stats) -> None:
        if verbose:
            hlog.promoted(str(sid), len(promoted), format_epoch_ms(promoted.start_time_ms))

    registry = StreamRegistry(config, on_promote=on_promote)
    channel = registry.channel(stream_id, sample_rate=stream_cfg.sample_rate)

    source = SyntheticStream(
        sample_rate=stream_cfg.sample_rate,
        packet_samples=stream_cfg.packet_samples,
        seed=seed,
    )
    count = max(1, math.ceil(seconds * stream_cfg.sample_rate / stream_cfg.packet_samples))
    segments = delivery_order(source.packets(count), late_every, delay)

    try:
        report = run_simulation(channel, segments)
    except ValueError as e:
        hlog.error(str(e), hlog.Icon.FAIL)
        raise SystemExit(1)

    buffer = channel.buffer
    if buffer is None:
        hlog.error("No data ingested", hlog.Icon.FAIL)
        raise SystemExit(1)
    hlog.stream_opened(str(stream_id), buffer.capacity, buffer.sample_rate)
    for hole in buffer.holes:
        hlog.hole_pending(str(stream_id), format_epoch_ms(buffer.time_of(hole.start)), hole.length)

    table = Table(title=str(stream_id))
    table.add_column("Field")
    table.add_column("Value", justify="right")
    table.add_row("origin", format_epoch_ms(buffer.origin_time_ms))
    table.add_row("span", format_span(buffer.origin_time_ms, buffer.end_time_ms))
    table.add_row("capacity", str(buffer.capacity))
    table.add_row("graph", str(buffer.graph_len))
    table.add_row("queue", str(buffer.queue_len))
    table.add_row("holes", str(len(buffer.holes)))
    table.add_row("late packets", str(report.late))
    for name, value in report.statistics.items():
        table.add_row(name, format_statistic(value))
    Console(highlight=False).print(table)

    hlog.simulation_complete(str(stream_id), report.delivered, report.holes_patched)


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    from helibuffer.config import Config

    try:
        cfg = Config.load()
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo()
    click.echo("[buffer]")
    click.echo(f"  window_minutes = {cfg.buffer.window_minutes}")
    click.echo(f"  max_tracked = {cfg.buffer.max_tracked}")
    click.echo(f"  statistics = {cfg.buffer.statistics}")
    click.echo()
    click.echo("[patch]")
    click.echo(f"  policy = {cfg.patch.policy}")
    click.echo()
    click.echo("[ingest]")
    click.echo(f"  promote_on_ingest = {cfg.ingest.promote_on_ingest}")
    click.echo(f"  promotion_interval = {cfg.ingest.promotion_interval}")
    click.echo()
    click.echo("[stream]")
    click.echo(f"  network = {cfg.stream.network}")
    click.echo(f"  station = {cfg.stream.station}")
    click.echo(f"  location = {cfg.stream.location}")
    click.echo(f"  channel = {cfg.stream.channel}")
    click.echo(f"  sample_rate = {cfg.stream.sample_rate}")
    click.echo(f"  packet_samples = {cfg.stream.packet_samples}")


@config.command("edit")
def config_edit() -> None:
    """Open config file in editor."""
    import os
    import subprocess

    from helibuffer import logging as hlog
    from helibuffer.config import Config

    cfg = Config.load()

    # Create config if it doesn't exist
    if not cfg.config_path.exists():
        cfg.save()
        hlog.config_created(str(cfg.config_path))

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(cfg.config_path)])


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from helibuffer.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")


if __name__ == "__main__":
    main()
