"""Repository configuration stored in ``.mgit/config.json``."""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from mgit import __version__
from mgit.core.errors import InvalidRecordError, IOFailureError
from mgit.core.hashing import DEFAULT_SCHEME, HashScheme
from mgit.core.storage import DEFAULT_BRANCH
from mgit.core.transaction import atomic_write

CONFIG_FILE_NAME = "config.json"


class UserConfig(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    pubkey: Optional[str] = None

    model_config = {"extra": "forbid"}


class RemoteConfig(BaseModel):
    url: Optional[str] = None
    token: Optional[str] = None

    model_config = {"extra": "forbid"}


class MGitConfig(BaseModel):
    """Settings for one overlay repository."""

    version: str = __version__
    created: datetime = Field(default_factory=datetime.now)
    default_branch: str = DEFAULT_BRANCH
    hash_scheme: HashScheme = DEFAULT_SCHEME
    http_timeout: float = 30.0
    user: UserConfig = Field(default_factory=UserConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)

    model_config = {"extra": "forbid", "validate_assignment": True}

    def get_value(self, key: str) -> Any:
        """Read a dotted key such as ``user.pubkey``."""
        node: Any = self
        for part in key.split("."):
            if not isinstance(node, BaseModel) or part not in type(node).model_fields:
                raise KeyError(key)
            node = getattr(node, part)
        if isinstance(node, BaseModel):
            raise KeyError(key)
        return node

    def set_value(self, key: str, value: str) -> None:
        """Assign a dotted key; the value is validated against the field type."""
        *parents, leaf = key.split(".")
        node: Any = self
        for part in parents:
            if not isinstance(node, BaseModel) or part not in type(node).model_fields:
                raise KeyError(key)
            node = getattr(node, part)
        if not isinstance(node, BaseModel) or leaf not in type(node).model_fields:
            raise KeyError(key)
        if isinstance(getattr(node, leaf), BaseModel):
            raise KeyError(key)
        try:
            setattr(node, leaf, value)
        except ValidationError as e:
            raise InvalidRecordError(f"invalid value for {key}: {value!r}") from e


def config_path(root: Path) -> Path:
    return Path(root) / CONFIG_FILE_NAME


def load_config(root: Path) -> MGitConfig:
    """Load the config for an overlay directory, or defaults when absent."""
    path = config_path(root)
    if not path.exists():
        return MGitConfig()
    try:
        return MGitConfig.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError as e:
        raise InvalidRecordError(f"invalid config file {path}: {e}") from e
    except OSError as e:
        raise IOFailureError(f"failed to read config file {path}: {e}") from e


def save_config(root: Path, config: MGitConfig) -> None:
    atomic_write(config_path(root), json.dumps(config.model_dump(mode="json"), indent=2))
