"""
Profiles and workspaces.

A profile is a directory under the workspace root holding ``profile.conf``
(same ``KEY=base64(value)`` format as the global key store, no protected
keys). A workspace is a profile that also carries ``.ssh/<service>.conf``
INI files with a ``[base]`` section and per-environment overrides.

Directories are assembled under a hidden temp name and renamed into place,
so a profile never exists without its ``profile.conf``.
"""
import os
import re
import shutil
import tempfile
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, NamedTuple, Optional

from .audit import AuditLogger
from .config import ConfigRoot
from .errors import (
    InvalidNameError,
    ProfileExistsError,
    ProfileNotFoundError,
    SshConfExistsError,
    SshConfNotFoundError,
    StorageError,
)
from .ini import IniFile
from .keystore import KeyStore
from .models import PROFILE_NAME_PATTERN, IniSettings, ProfileInfo, SshTunnel
from .utils import ensure_dir, ensure_file

PROFILE_CONF = "profile.conf"
SSH_DIR = ".ssh"
BASE_SECTION = "base"
DEFAULT_SSH_FILES = ("db.conf", "redis.conf", "rmq.conf", "wordpress.conf")


class ServicePreset(NamedTuple):
    port: int
    extra: Mapping[str, str] = MappingProxyType({})

SERVICE_PRESETS: Dict[str, ServicePreset] = {
    "db.conf": ServicePreset(5432, {"DB_ENGINE": "postgres"}),
    "postgres.conf": ServicePreset(5432, {"DB_ENGINE": "postgres"}),
    "mysql.conf": ServicePreset(3306, {"DB_ENGINE": "mysql"}),
    "mongo.conf": ServicePreset(27017),
    "redis.conf": ServicePreset(6379),
    "rmq.conf": ServicePreset(5672, {"RMQ_MANAGEMENT_PORT": "15672"}),
    "kafka.conf": ServicePreset(9092, {"KAFKA_BOOTSTRAP_SERVERS": "127.0.0.1:9092"}),
    "elasticsearch.conf": ServicePreset(9200),
    "nginx.conf": ServicePreset(80, {"NGINX_SERVER_NAME": "localhost"}),
    "wordpress.conf": ServicePreset(8080),
}
GENERIC_PRESET = ServicePreset(8080)


def conf_file_name(name: str) -> str:
    """Normalise a service name to its ``.conf`` file name."""
    return name if name.endswith(".conf") else f"{name}.conf"

def populate_ssh_conf(
    path: Path,
    file_name: str,
    settings: Optional[IniSettings] = None,
    audit: Optional[AuditLogger] = None,
    home: Optional[Path] = None,
) -> Path:
    """
    Write the default ``[base]``, ``[dev]`` and ``[uat]`` sections of an SSH conf.

    ``path`` is the ``.ssh`` directory. Ports come from SERVICE_PRESETS,
    UAT forwards on ``port + 1`` locally.
    """
    file_name = conf_file_name(file_name)
    preset = SERVICE_PRESETS.get(file_name, GENERIC_PRESET)
    key_ref = (home or Path.home()) / ".ssh" / "id_rsa"
    service = file_name[: -len(".conf")]

    ini = IniFile(Path(path) / file_name, settings, audit)
    ini.write_many(BASE_SECTION, {
        "SSH_DESC": f"{service} tunnel",
        "SSH_PRIVATE_KEY_REF": str(key_ref),
        "SSH_SERVER_ADDR": "127.0.0.1",
        "SSH_SERVER_PORT": "22",
        "SSH_SERVER_USER": "sysadmin",
        "SSH_LOCAL_ADDR": "127.0.0.1",
        "SSH_LOCAL_PORT": str(preset.port),
        "SSH_REMOTE_ADDR": "127.0.0.1",
        "SSH_REMOTE_PORT": str(preset.port),
        "SSH_KEEP_ALIVE": "60",
        "SSH_TIMEOUT": "10",
        **preset.extra,
    })
    ini.write_many("dev", {
        "SSH_DESC": f"Development tunnel for {file_name}",
        "SSH_SERVER_PORT": "2222",
    })
    ini.write_many("uat", {
        "SSH_DESC": f"UAT tunnel for {file_name}",
        "SSH_SERVER_PORT": "2223",
        "SSH_LOCAL_PORT": str(preset.port + 1),
    })
    return ini.path


class WorkspaceManager:
    """Profile and workspace directories under ``ConfigRoot.workspace_dir``."""

    def __init__(self, config: ConfigRoot, audit: Optional[AuditLogger] = None):
        self.config = config
        self.root = config.workspace_dir
        self.audit = audit or AuditLogger(config.audit_file)

    # -- paths ------------------------------------------------------------

    def profile_dir(self, name: str) -> Path:
        if not re.match(PROFILE_NAME_PATTERN, name or "") or name in (".", ".."):
            raise InvalidNameError(f"Invalid profile name: {name!r}")
        return self.root / name

    def profile_conf_path(self, name: str) -> Path:
        return self.profile_dir(name) / PROFILE_CONF

    def ssh_dir(self, name: str) -> Path:
        return self.profile_dir(name) / SSH_DIR

    def _require_profile(self, name: str) -> Path:
        directory = self.profile_dir(name)
        if not directory.is_dir():
            raise ProfileNotFoundError(f"Profile '{name}' does not exist.")
        return directory

    def _require_absent(self, name: str) -> Path:
        directory = self.profile_dir(name)
        if directory.exists():
            raise ProfileExistsError(f"Profile '{name}' already exists at '{directory}'.")
        return directory

    def _assemble(self, name: str, build: Callable[[Path], None]) -> Path:
        """Build a profile directory under a temp name, then rename it into place."""
        target = self._require_absent(name)
        ensure_dir(self.root)
        staging = Path(tempfile.mkdtemp(prefix=f".{name}.", dir=self.root))
        try:
            build(staging)
            os.rename(staging, target)
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise StorageError(f"Could not create profile '{name}': {e}") from e
        except Exception:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        return target

    # -- profiles ---------------------------------------------------------

    def list_profiles(self) -> List[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_dir() and not p.name.startswith("."))

    def exists(self, name: str) -> bool:
        return self.profile_dir(name).is_dir()

    def profile_info(self, name: str) -> ProfileInfo:
        directory = self._require_profile(name)
        return ProfileInfo(
            name=name,
            path=str(directory),
            has_conf=(directory / PROFILE_CONF).is_file(),
            ssh_confs=self.list_ssh_confs(name),
        )

    def add_profile(self, name: str) -> Path:
        """
        Create ``<root>/<name>/profile.conf``.

        A directory that exists without ``profile.conf`` (left by something
        else) is repaired by creating the conf file; one that already has it
        is rejected with ProfileExistsError.
        """
        directory = self.profile_dir(name)
        if directory.is_dir():
            conf = directory / PROFILE_CONF
            if conf.is_file():
                raise ProfileExistsError(f"Profile '{name}' already exists at '{directory}'.")
            ensure_file(conf)
            self.audit.log("profile.repair", profile=name)
            return directory

        self._assemble(name, lambda staging: ensure_file(staging / PROFILE_CONF))
        self.audit.log("profile.add", profile=name)
        return directory

    def clone_profile(self, src: str, dst: str) -> Path:
        src_conf = self.profile_conf_path(src)
        if not src_conf.is_file():
            raise ProfileNotFoundError(f"Profile '{src}' has no {PROFILE_CONF}.")
        directory = self._assemble(dst, lambda staging: shutil.copy2(src_conf, staging / PROFILE_CONF))
        self.audit.log("profile.clone", src=src, dst=dst)
        return directory

    def rename_profile(self, old: str, new: str) -> Path:
        source = self._require_profile(old)
        target = self._require_absent(new)
        try:
            os.rename(source, target)
        except OSError as e:
            raise StorageError(f"Could not rename profile '{old}': {e}") from e
        self.audit.log("profile.rename", old=old, new=new)
        return target

    def remove_profile(self, name: str) -> None:
        """Delete the profile directory unconditionally. Confirmation is the caller's job."""
        directory = self._require_profile(name)
        try:
            shutil.rmtree(directory)
        except OSError as e:
            raise StorageError(f"Could not remove profile '{name}': {e}") from e
        self.audit.log("profile.remove", profile=name)

    # -- profile-scoped keys ----------------------------------------------

    def profile_store(self, name: str) -> KeyStore:
        conf = self.profile_conf_path(name)
        if not conf.is_file():
            raise ProfileNotFoundError(f"Profile '{name}' does not exist.")
        return KeyStore(conf, protected=None, audit=self.audit)

    def add_profile_conf(self, profile: str, key: str, value: str, comment: Optional[str] = None) -> str:
        return self.profile_store(profile).add(key, value, comment)

    def get_profile_conf_value(self, profile: str, key: str) -> str:
        return self.profile_store(profile).get(key)

    def update_profile_conf(self, profile: str, key: str, value: str) -> None:
        self.profile_store(profile).update(key, value)

    def remove_profile_conf_key(self, profile: str, key: str) -> None:
        self.profile_store(profile).remove(key)

    def rename_profile_conf_key(self, profile: str, old: str, new: str) -> str:
        return self.profile_store(profile).rename(old, new)

    def profile_conf_items(self, profile: str) -> Dict[str, str]:
        return self.profile_store(profile).as_dict()

    # -- workspaces -------------------------------------------------------

    def add_workspace(self, name: str, ssh_files: Iterable[str] = DEFAULT_SSH_FILES) -> Path:
        """Create a profile plus a populated ``.ssh`` bundle in one step."""
        settings = self.config.ini
        ssh_files = [conf_file_name(f) for f in ssh_files]

        def build(staging: Path) -> None:
            ensure_file(staging / PROFILE_CONF)
            ssh = ensure_dir(staging / SSH_DIR)
            for file_name in ssh_files:
                populate_ssh_conf(ssh, file_name, settings)

        directory = self._assemble(name, build)
        self.audit.log("workspace.add", workspace=name, ssh_files=ssh_files)
        return directory

    def clone_workspace(self, src: str, dst: str) -> Path:
        source = self._require_profile(src)
        directory = self._assemble(dst, lambda staging: shutil.copytree(source, staging, dirs_exist_ok=True))
        self.audit.log("workspace.clone", src=src, dst=dst)
        return directory

    def list_ssh_confs(self, name: str) -> List[str]:
        ssh = self.ssh_dir(name)
        if not ssh.is_dir():
            return []
        return sorted(p.name for p in ssh.glob("*.conf") if p.is_file())

    def ssh_conf(self, name: str, conf_name: str) -> IniFile:
        self._require_profile(name)
        path = self.ssh_dir(name) / conf_file_name(conf_name)
        if not path.is_file():
            raise SshConfNotFoundError(f"SSH conf '{conf_file_name(conf_name)}' not found in workspace '{name}'.")
        return IniFile(path, self.config.ini, self.audit)

    def add_ssh_conf(self, name: str, conf_name: str) -> Path:
        self._require_profile(name)
        file_name = conf_file_name(conf_name)
        ssh = ensure_dir(self.ssh_dir(name))
        if (ssh / file_name).exists():
            raise SshConfExistsError(f"SSH conf '{file_name}' already exists in workspace '{name}'.")
        return populate_ssh_conf(ssh, file_name, self.config.ini, self.audit)

    def remove_ssh_conf(self, name: str, conf_name: str) -> None:
        path = self.ssh_conf(name, conf_name).path
        try:
            path.unlink()
        except OSError as e:
            raise StorageError(f"Could not remove {path}: {e}") from e
        self.audit.log("workspace.ssh.remove", workspace=name, conf=path.name)

    def resolve_effective_config(self, name: str, conf_name: str, section: str) -> Dict[str, str]:
        """``[base]`` entries overlaid with the entries of ``[section]``."""
        ini = self.ssh_conf(name, conf_name)
        merged = ini.items(BASE_SECTION)
        if section != BASE_SECTION:
            merged.update(ini.items(section))
        return merged

    def tunnel(self, name: str, conf_name: str, section: str) -> SshTunnel:
        return SshTunnel.from_mapping(self.resolve_effective_config(name, conf_name, section))
