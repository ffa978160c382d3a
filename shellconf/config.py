"""
Configuration root for shellconf.

All stores receive a ConfigRoot instead of reading fixed paths, so a test (or
a second installation) can point everything at another directory.
"""
import os
import sys
from pathlib import Path
from typing import Optional

from .models import FrozenModel, IniSettings

APP_NAME = "shellconf"
HOME_ENV = "SHELLCONF_HOME"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def get_config_dir() -> Path:
    """Returns the platform-specific configuration directory."""
    override = os.getenv(HOME_ENV)
    if override:
        return Path(override).expanduser()

    if sys.platform == "win32":
        appdata = os.getenv("APPDATA")
        if appdata:
            base_dir = Path(appdata)
        else:
            base_dir = Path.home() / "AppData" / "Roaming"
    else:
        # XDG Base Directory specification
        xdg_config = os.getenv("XDG_CONFIG_HOME")
        if xdg_config:
            base_dir = Path(xdg_config)
        else:
            base_dir = Path.home() / ".config"

    return base_dir / APP_NAME

def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = raw.strip().lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    return default

def ini_settings_from_env() -> IniSettings:
    """Read the INI validation flags from the environment."""
    return IniSettings(
        strict=_env_flag("SHELLCONF_INI_STRICT", False),
        allow_empty_values=_env_flag("SHELLCONF_INI_ALLOW_EMPTY_VALUES", True),
        allow_spaces_in_names=_env_flag("SHELLCONF_INI_ALLOW_SPACES_IN_NAMES", True),
    )

class ConfigRoot(FrozenModel):
    root: Path
    ini: IniSettings = IniSettings()

    @property
    def key_file(self) -> Path:
        return self.root / "key.conf"

    @property
    def protected_file(self) -> Path:
        return self.root / "protected.conf"

    @property
    def group_file(self) -> Path:
        return self.root / "group.conf"

    @property
    def workspace_dir(self) -> Path:
        return self.root / "workspace"

    @property
    def backup_dir(self) -> Path:
        return self.root / "backup"

    @property
    def group_backup_file(self) -> Path:
        return self.backup_dir / "group.conf.bak"

    @property
    def audit_file(self) -> Path:
        return self.root / "audit.jsonl"

def get_config_root(root: Optional[Path] = None, ini: Optional[IniSettings] = None) -> ConfigRoot:
    """Resolve the configuration root from arguments, falling back to the environment."""
    return ConfigRoot(
        root=Path(root) if root is not None else get_config_dir(),
        ini=ini if ini is not None else ini_settings_from_env(),
    )
