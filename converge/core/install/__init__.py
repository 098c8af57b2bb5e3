"""
Installation strategy resolver.
"""

from converge.core.install.resolver import SettingsRegistry, install, resolve_install

__all__ = ["SettingsRegistry", "install", "resolve_install"]
