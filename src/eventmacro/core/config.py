"""Configuration models, loading and validation."""

import json
import hashlib
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Literal, Optional, Union

import yaml
import jsonschema
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..workflow.models import Action, ActionModel, iter_references
from .errors import ConfigError


# ==================== Sources ====================

class FileSourceConfig(BaseModel):
    """Poll a single file for one JSON event."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["file"] = "file"
    path: str = Field(min_length=1)
    poll_ms: int = Field(default=100, ge=1)
    delete_on_success: bool = False


class DirectorySourceConfig(BaseModel):
    """Poll a directory for files containing JSON events."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["directory"] = "directory"
    path: str = Field(min_length=1)
    pattern: Optional[str] = None
    recursive: bool = False
    poll_ms: int = Field(default=400, ge=1)


class TcpSourceConfig(BaseModel):
    """Listen for newline-delimited JSON over TCP."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["tcp"] = "tcp"
    bind: str
    ack: bool = True
    max_line_bytes: int = Field(default=1024 * 1024, ge=1024)

    @field_validator("bind")
    @classmethod
    def _check_bind(cls, value: str) -> str:
        host, sep, port = value.rpartition(":")
        if not sep or not host or not port.isdigit() or int(port) > 65535:
            raise ValueError(f"bind must look like 'host:port', got {value!r}")
        return value

    @property
    def host(self) -> str:
        return self.bind.rpartition(":")[0].strip("[]")

    @property
    def port(self) -> int:
        return int(self.bind.rpartition(":")[2])


class StdinSourceConfig(BaseModel):
    """Read newline-delimited JSON from standard input."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["stdin"] = "stdin"


SourceConfig = Annotated[
    Union[FileSourceConfig, DirectorySourceConfig, TcpSourceConfig, StdinSourceConfig],
    Field(discriminator="type"),
]


# ==================== Bindings & settings ====================

MissingFieldPolicy = Literal["empty", "fail"]


class EventBinding(BaseModel):
    """Connects an event type to a workflow and maps event fields to variables."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    workflow: str = Field(min_length=1)
    # variable name -> dotted path into the event, e.g. {"side": "order.side"}
    vars_map: dict[str, str] = Field(default_factory=dict)
    # Overrides RuntimeSettings.missing_field_policy for this binding
    on_missing_field: Optional[MissingFieldPolicy] = None


class RuntimeSettings(BaseModel):
    """Interpreter and ingestion tuning."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_depth: int = Field(default=64, ge=1, le=200)
    queue_capacity: int = Field(default=256, ge=1, le=65536)
    missing_field_policy: MissingFieldPolicy = "empty"
    event_type_field: str = Field(default="type", min_length=1)
    dry_run: bool = False


class Config(BaseModel):
    """
    Root configuration.

    - ``sources``: event inputs (file, directory, tcp, stdin)
    - ``actions``: reusable named actions, used through ``{"type": "ref"}``
    - ``workflows``: named lists of actions
    - ``events``: event type -> binding
    - ``globals``: JSON values available as ``{{@key}}``
    - ``settings``: runtime tuning
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    sources: list[SourceConfig] = Field(default_factory=list)
    actions: dict[str, Action] = Field(default_factory=dict)
    workflows: dict[str, list[Action]] = Field(default_factory=dict)
    events: dict[str, EventBinding] = Field(default_factory=dict)
    globals: dict[str, Any] = Field(default_factory=dict)
    settings: RuntimeSettings = Field(default_factory=RuntimeSettings)

    @field_validator("workflows", "actions")
    @classmethod
    def _check_names(cls, value: dict[str, Any]) -> dict[str, Any]:
        for name in value:
            if not name.strip():
                raise ValueError("names must be non-empty")
        return value

    def config_hash(self) -> str:
        """Generate hash of config for change detection."""
        return hashlib.sha256(
            self.model_dump_json(by_alias=True).encode()
        ).hexdigest()[:16]


# ==================== Validation ====================

def _check_refs(action: ActionModel, known: set[str], where: str) -> None:
    for location, name in iter_references(action):
        if name not in known:
            at = f"{where}.{location}" if location else where
            raise ConfigError(
                f"Referenced action '{name}' was not found in `actions` ({at})"
            )


def validate_config(cfg: Config) -> Config:
    """
    Cross-reference checks the schema cannot express.

    - every event binding points at an existing workflow
    - every ``ref`` (in named actions and workflows) names an existing action

    Cycles between named actions are not rejected here; the interpreter's
    depth limit catches them at run time.
    """
    for event_type, binding in cfg.events.items():
        if binding.workflow not in cfg.workflows:
            raise ConfigError(
                f"Event '{event_type}' refers to missing workflow '{binding.workflow}'"
            )

    known = set(cfg.actions)
    for name, action in cfg.actions.items():
        _check_refs(action, known, f"actions.{name}")

    for wf_name, steps in cfg.workflows.items():
        for idx, step in enumerate(steps):
            _check_refs(step, known, f"workflows.{wf_name}[{idx}]")

    return cfg


@lru_cache(maxsize=1)
def generate_schema() -> dict[str, Any]:
    """JSON Schema of the configuration file."""
    return Config.model_json_schema(by_alias=True)


def validate_schema(data: Any, config_path: Optional[str] = None) -> None:
    """Validate raw config data against the generated JSON Schema."""
    validator = jsonschema.Draft202012Validator(generate_schema())
    error = jsonschema.exceptions.best_match(validator.iter_errors(data))
    if error is not None:
        location = "/".join(str(p) for p in error.absolute_path) or "<root>"
        raise ConfigError(
            f"Schema validation failed at {location}: {error.message}",
            config_path=config_path,
        )


# ==================== Loading ====================

def load_from_dict(data: Any, config_path: Optional[str] = None) -> Config:
    """Build and validate a Config from already-parsed data."""
    if data is None:
        data = {}
    validate_schema(data, config_path)
    try:
        cfg = Config.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config: {e}", config_path=config_path) from e
    try:
        return validate_config(cfg)
    except ConfigError as e:
        e.context["config_path"] = config_path
        raise


def load_from_str(text: str, fmt: str = "json") -> Config:
    """Parse a JSON or YAML string into a validated Config."""
    return load_from_dict(_parse_text(text, fmt))


def _parse_text(text: str, fmt: str, config_path: Optional[str] = None) -> Any:
    try:
        if fmt in ("yaml", "yml"):
            return yaml.safe_load(text) or {}
        elif fmt == "json":
            return json.loads(text) if text.strip() else {}
        raise ConfigError(f"Unsupported config format: {fmt}", config_path=config_path)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML: {e}", config_path=config_path) from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON: {e}", config_path=config_path) from e


class ConfigLoader:
    """Loads and validates YAML/JSON configuration files."""

    def __init__(self):
        self._hashes: dict[str, str] = {}

    def load(self, path: str | Path) -> Config:
        """Load, schema-check and cross-reference-check a config file."""
        path = Path(path)
        data = self._load_file(path)
        return load_from_dict(data, config_path=str(path))

    def has_config_changed(self, path: str | Path) -> bool:
        """Check if a config file has changed since last load."""
        path = Path(path)
        return self.compute_file_hash(path) != self._hashes.get(str(path))

    def _load_file(self, path: Path) -> Any:
        """Load YAML or JSON file."""
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}", config_path=str(path))

        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read config: {e}", config_path=str(path)) from e
        self._hashes[str(path)] = _hash_text(content)

        return _parse_text(content, path.suffix.lstrip(".").lower(), config_path=str(path))

    @staticmethod
    def compute_file_hash(path: Path) -> str:
        """Compute hash of file contents ("" if missing)."""
        if not path.exists():
            return ""
        return _hash_text(path.read_text(encoding="utf-8"))


def _hash_text(content: str) -> str:
    return hashlib.sha256(content.encode()).hexdigest()[:16]
