"""
Diagnostic checks over a shellconf configuration root.
"""
import importlib.metadata
import os
from typing import List

from .config import ConfigRoot
from .errors import ShellConfError
from .groups import GroupStore
from .ini import IniFile
from .keystore import KeyStore, ProtectedKeys
from .models import DoctorCheck
from .workspace import BASE_SECTION, WorkspaceManager


def run_diagnostics(config: ConfigRoot) -> List[DoctorCheck]:
    """Execute the health checks synchronously. Nothing is modified."""
    checks: List[DoctorCheck] = []

    # 1. Config directory
    root = config.root
    if not root.exists():
        checks.append(DoctorCheck(name="1. Config Directory", status="warn", detail=f"{root} does not exist yet"))
    elif os.access(root, os.W_OK):
        checks.append(DoctorCheck(name="1. Config Directory", status="pass", detail=str(root)))
    else:
        checks.append(DoctorCheck(name="1. Config Directory", status="fail", detail=f"{root} is not writable"))

    # 2. Store files
    missing = [p.name for p in (config.key_file, config.protected_file, config.group_file) if not p.is_file()]
    if missing:
        checks.append(DoctorCheck(name="2. Store Files", status="warn", detail=f"Not created yet: {', '.join(missing)}"))
    else:
        checks.append(DoctorCheck(name="2. Store Files", status="pass", detail="key, protected and group files present"))

    # 3. Key store decodes
    store = KeyStore(config.key_file)
    try:
        count = len(store.as_dict())
        checks.append(DoctorCheck(name="3. Key Store", status="pass", detail=f"{count} keys decode cleanly"))
    except ShellConfError as e:
        checks.append(DoctorCheck(name="3. Key Store", status="fail", detail=str(e)))

    # 4. Stale protected entries
    existing = set(store.keys())
    stale = [k for k in ProtectedKeys(config.protected_file).user_keys() if k not in existing]
    if stale:
        checks.append(DoctorCheck(name="4. Protected Keys", status="warn", detail=f"Stale: {', '.join(stale)} (run 'protect sync')"))
    else:
        checks.append(DoctorCheck(name="4. Protected Keys", status="pass", detail="No stale entries"))

    # 5. Dangling group references
    groups = GroupStore(config.group_file, store)
    dangling = {name: [k for k in groups.keys_of(name) if k not in existing] for name in groups.names()}
    dangling = {name: keys for name, keys in dangling.items() if keys}
    if dangling:
        detail = "; ".join(f"{name}: {', '.join(keys)}" for name, keys in dangling.items())
        checks.append(DoctorCheck(name="5. Groups", status="warn", detail=f"Dangling keys ({detail}), run 'group sync'"))
    else:
        checks.append(DoctorCheck(name="5. Groups", status="pass", detail=f"{len(groups.names())} groups consistent"))

    # 6. Profiles and SSH confs
    workspaces = WorkspaceManager(config)
    incomplete = []
    no_base = []
    for name in workspaces.list_profiles():
        try:
            info = workspaces.profile_info(name)
        except ShellConfError:
            incomplete.append(name)
            continue
        if not info.has_conf:
            incomplete.append(name)
        for conf in info.ssh_confs:
            if not IniFile(workspaces.ssh_dir(name) / conf).section_exists(BASE_SECTION):
                no_base.append(f"{name}/{conf}")
    if incomplete:
        checks.append(DoctorCheck(name="6. Profiles", status="fail", detail=f"Missing profile.conf: {', '.join(incomplete)}"))
    else:
        checks.append(DoctorCheck(name="6. Profiles", status="pass", detail=f"{len(workspaces.list_profiles())} profiles"))
    if no_base:
        checks.append(DoctorCheck(name="7. SSH Confs", status="warn", detail=f"No [base] section: {', '.join(no_base)}"))
    else:
        checks.append(DoctorCheck(name="7. SSH Confs", status="pass", detail="All SSH confs have a [base] section"))

    # 8. Dependencies
    try:
        versions = [f"{dist} {importlib.metadata.version(dist)}" for dist in ("cryptography", "argon2-cffi", "pydantic", "typer", "rich")]
        checks.append(DoctorCheck(name="8. Dependencies", status="pass", detail=", ".join(versions)))
    except importlib.metadata.PackageNotFoundError as e:
        checks.append(DoctorCheck(name="8. Dependencies", status="fail", detail=f"Missing: {e}"))

    return checks
