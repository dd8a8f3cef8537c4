from __future__ import annotations

from typing import Optional

from ..config import ProvisionerConfig
from ..resources import ResourceKind
from .apk import ApkBackend
from .base import Backend, BackendRegistry
from .files import FileBackend
from .flatpak import FlatpakBackend
from .memory import InMemoryBackend
from .openrc import OpenRCBackend
from .repositories import ApkRepositoryBackend
from .ufw import UfwBackend

# Every (kind, provider) pair the Alpine registry serves.
PROVIDERS = (
    (ResourceKind.package, "apk"),
    (ResourceKind.package, "flatpak"),
    (ResourceKind.repository, "apk"),
    (ResourceKind.repository, "flatpak"),
    (ResourceKind.service, "openrc"),
    (ResourceKind.file, "file"),
    (ResourceKind.firewall_rule, "ufw"),
)


def default_registry(config: Optional[ProvisionerConfig] = None) -> BackendRegistry:
    """Wire the Alpine backends: apk, Flatpak, OpenRC, ufw and plain files."""
    cfg = config or ProvisionerConfig()
    flatpak = FlatpakBackend(remote=cfg.flatpak_remote, binary=cfg.binary("flatpak"))

    registry = BackendRegistry()
    registry.register(ResourceKind.package, "apk", ApkBackend(root=cfg.root, binary=cfg.binary("apk")))
    registry.register(ResourceKind.package, "flatpak", flatpak)
    registry.register(
        ResourceKind.repository, "apk", ApkRepositoryBackend(root=cfg.root, apk_binary=cfg.binary("apk"))
    )
    registry.register(ResourceKind.repository, "flatpak", flatpak)
    registry.register(
        ResourceKind.service,
        "openrc",
        OpenRCBackend(rc_update=cfg.binary("rc-update"), rc_service=cfg.binary("rc-service")),
    )
    registry.register(ResourceKind.file, "file", FileBackend(root=cfg.root))
    registry.register(ResourceKind.firewall_rule, "ufw", UfwBackend(binary=cfg.binary("ufw")))
    return registry


def memory_registry(backend: Optional[InMemoryBackend] = None) -> BackendRegistry:
    """A registry where one in-memory backend serves every provider."""
    backend = backend or InMemoryBackend()
    registry = BackendRegistry()
    for kind, provider in PROVIDERS:
        registry.register(kind, provider, backend)
    return registry


__all__ = [
    "ApkBackend",
    "ApkRepositoryBackend",
    "Backend",
    "BackendRegistry",
    "FileBackend",
    "FlatpakBackend",
    "InMemoryBackend",
    "OpenRCBackend",
    "PROVIDERS",
    "UfwBackend",
    "default_registry",
    "memory_registry",
]
