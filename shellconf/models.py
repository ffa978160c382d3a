"""
Pydantic v2 data models for shellconf.
"""
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PROFILE_NAME_PATTERN = r"^[A-Za-z0-9_.-]+$"


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)

class IniSettings(FrozenModel):
    strict: bool = False
    allow_empty_values: bool = True
    allow_spaces_in_names: bool = True

class GroupReadResult(FrozenModel):
    """Outcome of resolving a group: the keys that resolved and the ones that did not."""
    name: str
    values: Dict[str, str] = Field(default_factory=dict)
    missing: List[str] = Field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.missing)

class SyncReport(FrozenModel):
    changed: Dict[str, List[str]] = Field(default_factory=dict)  # group -> keys dropped
    removed: List[str] = Field(default_factory=list)             # groups dropped entirely

    @property
    def is_noop(self) -> bool:
        return not self.changed and not self.removed

class ProfileInfo(FrozenModel):
    name: str = Field(..., pattern=PROFILE_NAME_PATTERN)
    path: str
    has_conf: bool
    ssh_confs: List[str] = Field(default_factory=list)

class SshTunnel(FrozenModel):
    """Effective tunnel settings handed to whatever opens the connection."""
    description: str = ""
    server_addr: str
    server_port: int = 22
    server_user: str
    private_key: Optional[str] = None
    local_addr: str = "127.0.0.1"
    local_port: int
    remote_addr: str = "127.0.0.1"
    remote_port: Optional[int] = None
    keep_alive: int = 60
    timeout: int = 10

    @field_validator("server_port", "local_port", "remote_port")
    @classmethod
    def validate_port(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and not 0 < v < 65536:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @classmethod
    def from_mapping(cls, conf: Dict[str, str]) -> "SshTunnel":
        """Build a tunnel from an effective SSH_* mapping."""
        fields = {
            "description": conf.get("SSH_DESC"),
            "server_addr": conf.get("SSH_SERVER_ADDR"),
            "server_port": conf.get("SSH_SERVER_PORT"),
            "server_user": conf.get("SSH_SERVER_USER"),
            "private_key": conf.get("SSH_PRIVATE_KEY_REF"),
            "local_addr": conf.get("SSH_LOCAL_ADDR"),
            "local_port": conf.get("SSH_LOCAL_PORT"),
            "remote_addr": conf.get("SSH_REMOTE_ADDR"),
            "remote_port": conf.get("SSH_REMOTE_PORT"),
            "keep_alive": conf.get("SSH_KEEP_ALIVE"),
            "timeout": conf.get("SSH_TIMEOUT"),
        }
        return cls(**{k: v for k, v in fields.items() if v not in (None, "")})

    def ssh_args(self) -> List[str]:
        """Return the argv for a local port-forwarding ssh process."""
        remote_port = self.remote_port or self.local_port
        args = [
            "ssh", "-N",
            "-L", f"{self.local_addr}:{self.local_port}:{self.remote_addr}:{remote_port}",
            "-p", str(self.server_port),
            "-o", f"ServerAliveInterval={self.keep_alive}",
            "-o", f"ConnectTimeout={self.timeout}",
        ]
        if self.private_key:
            args += ["-i", self.private_key]
        args.append(f"{self.server_user}@{self.server_addr}")
        return args

class DoctorCheck(FrozenModel):
    name: str
    status: Literal["pass", "warn", "fail"]
    detail: str
