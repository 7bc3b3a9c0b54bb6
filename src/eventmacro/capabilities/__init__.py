"""Capability providers (input simulation boundary)."""

from .base import CapabilityProvider
from .dry_run import DryRunProvider
from .desktop import DesktopProvider

__all__ = ["CapabilityProvider", "DryRunProvider", "DesktopProvider", "create_provider"]


def create_provider(dry_run: bool) -> CapabilityProvider:
    """Return the dry-run provider or the desktop provider."""
    return DryRunProvider() if dry_run else DesktopProvider()
