# env.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Protocol

import yaml

from .errors import EnvironmentResolutionError
from .model import Pipeline, SecretRef


# ---------------------------------------------------------------------
# Secret stores
# ---------------------------------------------------------------------

class SecretStore(Protocol):
    def get(self, name: str) -> Optional[str]: ...


class MappingSecretStore:
    def __init__(self, secrets: Mapping[str, str]):
        self._secrets = {str(k): str(v) for k, v in secrets.items()}

    def get(self, name: str) -> Optional[str]:
        return self._secrets.get(name)


class EnvironSecretStore:
    """Secrets read from the process environment, optionally prefixed (SEQCI_SECRET_NAME)."""

    def __init__(self, prefix: str = "", environ: Optional[Mapping[str, str]] = None):
        self.prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def get(self, name: str) -> Optional[str]:
        return self._environ.get(f"{self.prefix}{name}")


class ChainSecretStore:
    """First store that knows the secret wins."""

    def __init__(self, *stores: SecretStore):
        self.stores = list(stores)

    def get(self, name: str) -> Optional[str]:
        for store in self.stores:
            value = store.get(name)
            if value is not None:
                return value
        return None


def load_secrets_file(path: str | Path) -> MappingSecretStore:
    """Load a flat YAML mapping NAME: value."""
    p = Path(path).expanduser()
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise EnvironmentResolutionError(message=f"Secrets file not found: {p}") from None
    except yaml.YAMLError as e:
        raise EnvironmentResolutionError(
            message=f"Secrets file is not valid YAML: {p}",
            details={"error": str(e)},
        ) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise EnvironmentResolutionError(message=f"Secrets file must be a mapping: {p}")
    return MappingSecretStore(data)


# ---------------------------------------------------------------------
# Run context
# ---------------------------------------------------------------------

@dataclass
class RunContext:
    """
    Everything a run needs besides the steps. Owned by exactly one run.

    `secrets` holds the resolved secret values so output can be masked.
    """
    environment: Dict[str, str]
    workdir: Path = field(default_factory=lambda: Path(".").resolve())
    secrets: frozenset = frozenset()

    def snapshot(self, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        env = dict(self.environment)
        if extra:
            env.update(extra)
        return env


def resolve_environment(
    pipeline: Pipeline,
    store: Optional[SecretStore] = None,
    *,
    base: Optional[Mapping[str, str]] = None,
) -> tuple[Dict[str, str], frozenset]:
    """
    Merge base env (usually os.environ) + literal declarations + resolved secrets.

    Returns (environment, secret_values). Raises EnvironmentResolutionError
    naming every variable whose secret is missing; values are never included.
    """
    env: Dict[str, str] = dict(base or {})
    secret_values = set()
    missing = []

    for key, value in pipeline.env.items():
        if isinstance(value, SecretRef):
            resolved = store.get(value.name) if store is not None else None
            if resolved is None:
                missing.append(f"{key} (secrets.{value.name})")
                continue
            env[key] = resolved
            if resolved:
                secret_values.add(resolved)
        else:
            env[key] = str(value)

    if missing:
        raise EnvironmentResolutionError(
            message="Could not resolve secret(s)",
            details={"missing": ", ".join(missing)},
        )

    return env, frozenset(secret_values)


def build_context(
    pipeline: Pipeline,
    store: Optional[SecretStore] = None,
    *,
    workdir: str | Path = ".",
    inherit_env: bool = True,
) -> RunContext:
    base = os.environ.copy() if inherit_env else {}
    env, secrets = resolve_environment(pipeline, store, base=base)
    root = Path(workdir).expanduser().resolve()
    if not root.is_dir():
        raise EnvironmentResolutionError(message=f"Working directory not found: {root}")
    return RunContext(environment=env, workdir=root, secrets=secrets)


def mask(text: str, secrets: Iterable[str]) -> str:
    # longest first so a secret containing another is fully hidden
    for s in sorted(secrets, key=len, reverse=True):
        if s:
            text = text.replace(s, "***")
    return text
