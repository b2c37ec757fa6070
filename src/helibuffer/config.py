"""Configuration system for helibuffer."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

from helibuffer.ringbuffer import PatchPolicy
from helibuffer.stats import EXTREME_VALUES_STORED, STATISTIC_NAMES

PATCH_POLICIES = tuple(p.value for p in PatchPolicy)


@dataclass
class BufferConfig:
    """Ring buffer sizing and attached statistics."""

    window_minutes: float = 60.0  # History kept per stream (capacity = window x rate)
    max_tracked: int = EXTREME_VALUES_STORED  # Extremes kept by min/max statistics
    statistics: list[str] = field(default_factory=lambda: ["mean", "min", "max"])


@dataclass
class PatchConfig:
    """Hole patch acceptance.

    - warn: discontinuous patches are applied and logged
    - strict: discontinuous patches are rejected
    """

    policy: str = "warn"


@dataclass
class IngestConfig:
    """Promotion cadence for ingested data."""

    promote_on_ingest: bool = True  # Promote after every ingested segment
    promotion_interval: float = 1.0  # Seconds between timer promotions when not on ingest


@dataclass
class StreamConfig:
    """Default stream identity and shape used by the simulator."""

    network: str = "UW"
    station: str = "JCW"
    location: str = ""
    channel: str = "EHZ"
    sample_rate: float = 100.0  # Hz
    packet_samples: int = 400  # Samples per delivered segment


@dataclass
class SystemConfig:
    """Logging configuration."""

    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    buffer: BufferConfig = field(default_factory=BufferConfig)
    patch: PatchConfig = field(default_factory=PatchConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "helibuffer"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "helibuffer"

    @property
    def log_path(self) -> Path:
        """JSON-lines log path."""
        return self.state_dir / "helibuffer.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ["buffer", "patch", "ingest", "stream", "system"]:
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        Raises:
            ValueError: If the file cannot be parsed or holds invalid values.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            buffer=_load_buffer_config(data.get("buffer", {})),
            patch=_load_patch_config(data.get("patch", {})),
            ingest=_load_ingest_config(data.get("ingest", {})),
            stream=_load_stream_config(data.get("stream", {})),
            system=_load_system_config(data.get("system", {})),
        )


def _load_buffer_config(data: dict) -> BufferConfig:
    """Load buffer config from TOML data, using dataclass defaults for missing fields."""
    defaults = BufferConfig()

    window_minutes = data.get("window_minutes", defaults.window_minutes)
    max_tracked = data.get("max_tracked", defaults.max_tracked)
    statistics = [str(name) for name in data.get("statistics", defaults.statistics)]

    if window_minutes <= 0:
        raise ValueError(f"window_minutes must be > 0, got {window_minutes}")
    if max_tracked < 1:
        raise ValueError(f"max_tracked must be >= 1, got {max_tracked}")
    for name in statistics:
        if name not in STATISTIC_NAMES:
            raise ValueError(
                f"Invalid statistic: {name!r}. Must be one of {list(STATISTIC_NAMES)}"
            )
    if len(set(statistics)) != len(statistics):
        raise ValueError(f"Duplicate statistics: {statistics}")

    return BufferConfig(
        window_minutes=float(window_minutes),
        max_tracked=int(max_tracked),
        statistics=statistics,
    )


def _load_patch_config(data: dict) -> PatchConfig:
    """Load patch config from TOML data."""
    policy = str(data.get("policy", PatchConfig().policy))
    if policy not in PATCH_POLICIES:
        raise ValueError(f"Invalid patch policy: {policy!r}. Must be one of {list(PATCH_POLICIES)}")
    return PatchConfig(policy=policy)


def _load_ingest_config(data: dict) -> IngestConfig:
    """Load ingest config from TOML data."""
    d = IngestConfig()
    promotion_interval = data.get("promotion_interval", d.promotion_interval)
    if promotion_interval <= 0:
        raise ValueError(f"promotion_interval must be > 0, got {promotion_interval}")
    return IngestConfig(
        promote_on_ingest=bool(data.get("promote_on_ingest", d.promote_on_ingest)),
        promotion_interval=float(promotion_interval),
    )


def _load_stream_config(data: dict) -> StreamConfig:
    """Load stream config from TOML data."""
    d = StreamConfig()
    sample_rate = data.get("sample_rate", d.sample_rate)
    packet_samples = data.get("packet_samples", d.packet_samples)
    if sample_rate <= 0:
        raise ValueError(f"sample_rate must be > 0, got {sample_rate}")
    if packet_samples < 1:
        raise ValueError(f"packet_samples must be >= 1, got {packet_samples}")
    return StreamConfig(
        network=str(data.get("network", d.network)),
        station=str(data.get("station", d.station)),
        location=str(data.get("location", d.location)),
        channel=str(data.get("channel", d.channel)),
        sample_rate=float(sample_rate),
        packet_samples=int(packet_samples),
    )


def _load_system_config(data: dict) -> SystemConfig:
    """Load system config from TOML data."""
    d = SystemConfig()
    return SystemConfig(
        log_max_bytes=data.get("log_max_bytes", d.log_max_bytes),
        log_backup_count=data.get("log_backup_count", d.log_backup_count),
    )
