from __future__ import annotations

from typing import Optional

from fastapi import Depends

from nakes.core.config import NakesConfig, load_config
from nakes.services.registry import PackageSource, RegistryClient
from nakes.services.resolver import Resolver
from nakes.storage.lockfile_store import LockfileStore
from nakes.storage.sqlite_lockfile import SqliteLockfile

_config: Optional[NakesConfig] = None
_lockfile: Optional[LockfileStore] = None
_registry: Optional[RegistryClient] = None


def configure(config: NakesConfig) -> None:
    """Use an explicit configuration instead of loading one on first access."""
    global _config
    _config = config


def get_config() -> NakesConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def get_lockfile() -> LockfileStore:
    if _lockfile is None:
        raise RuntimeError("Services are not initialized; call initialize_services() first")
    return _lockfile


def get_registry() -> PackageSource:
    global _registry
    if _registry is None:
        config = get_config()
        _registry = RegistryClient(
            base_url=config.registry_url,
            timeout=config.request_timeout,
            retries=config.retries,
        )
    return _registry


def get_resolver(
    lockfile: LockfileStore = Depends(get_lockfile),
    registry: PackageSource = Depends(get_registry),
    config: NakesConfig = Depends(get_config),
) -> Resolver:
    return Resolver(lockfile, registry, fan_out=config.fan_out)


async def initialize_services() -> None:
    """
    Open the lockfile named by the configuration. Called on application startup.
    """
    global _lockfile
    if _lockfile is None:
        lockfile = SqliteLockfile(get_config().lockfile)
        await lockfile.open()
        _lockfile = lockfile


async def shutdown_services() -> None:
    """
    Close the lockfile and the registry client and forget the configuration.
    """
    global _config, _lockfile, _registry
    if _lockfile is not None:
        await _lockfile.close()
    if _registry is not None:
        await _registry.aclose()
    _config = None
    _lockfile = None
    _registry = None
