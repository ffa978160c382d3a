"""
Command Line Interface entry point using Typer.

Every command resolves its arguments up front and hands them to the core;
nothing below prompts except the removal confirmations.
"""
import json
import shlex
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, List, Optional

import typer
from pydantic import ValidationError as ModelValidationError
from rich.markup import escape

from .audit import AuditLogger, get_audit_log
from .config import ConfigRoot, get_config_root
from .crypto import Shield, decrypt_file, decrypt_value, encrypt_file, encrypt_value, generate_random_key
from .errors import InvalidNameError, ShellConfError
from .groups import GroupStore
from .ini import IniFile
from .keystore import KeyStore, ProtectedKeys
from .ui import (
    build_workspace_tree,
    confirm,
    console,
    render_error,
    render_status,
    render_table,
    render_tree,
    render_warning,
)
from .utils import mask_value
from .workspace import WorkspaceManager, populate_ssh_conf

VERSION = "0.1.0"

app = typer.Typer(
    help=(
        "[bold cyan]SHELLCONF[/]\n\n"
        "Encoded key/value configuration, key groups, INI files and SSH workspaces."
    ),
    no_args_is_help=True,
    rich_markup_mode="rich"
)
key_app = typer.Typer(help="Global key/value store.", no_args_is_help=True)
protect_app = typer.Typer(help="Protected keys.", no_args_is_help=True)
group_app = typer.Typer(help="Groups of keys.", no_args_is_help=True)
ini_app = typer.Typer(help="Generic INI file operations.", no_args_is_help=True)
profile_app = typer.Typer(help="Profiles and their profile.conf.", no_args_is_help=True)
workspace_app = typer.Typer(help="Workspaces and SSH tunnel confs.", no_args_is_help=True)
shield_app = typer.Typer(help="Encryption helpers.", no_args_is_help=True)

app.add_typer(key_app, name="key")
app.add_typer(protect_app, name="protect")
app.add_typer(group_app, name="group")
app.add_typer(ini_app, name="ini")
app.add_typer(profile_app, name="profile")
app.add_typer(workspace_app, name="workspace")
app.add_typer(shield_app, name="shield")


@contextmanager
def handle_errors() -> Generator[None, None, None]:
    """Render core errors as an error panel and exit 1."""
    try:
        yield
    except ShellConfError as e:
        render_error(str(e))
        raise typer.Exit(1)

def _config() -> ConfigRoot:
    return get_config_root()

def _audit(config: ConfigRoot) -> AuditLogger:
    return AuditLogger(config.audit_file)

def _key_store(config: ConfigRoot) -> KeyStore:
    audit = _audit(config)
    return KeyStore(config.key_file, ProtectedKeys(config.protected_file, audit=audit), audit)

def _protected(config: ConfigRoot) -> ProtectedKeys:
    return ProtectedKeys(config.protected_file, audit=_audit(config))

def _groups(config: ConfigRoot) -> GroupStore:
    return GroupStore(config.group_file, _key_store(config), config.group_backup_file, _audit(config))

def _workspaces(config: ConfigRoot) -> WorkspaceManager:
    return WorkspaceManager(config, _audit(config))

def _ini(file: Path) -> IniFile:
    config = _config()
    return IniFile(file, config.ini, _audit(config))


# -- key ------------------------------------------------------------------

@key_app.command(name="add")
def key_add(
    key: str = typer.Argument(..., help="Key name (normalised to UPPER_SNAKE)"),
    value: str = typer.Argument(..., help="Plain value, stored base64-encoded"),
    comment: Optional[str] = typer.Option(None, "--comment", "-c", help="Comment line written above the entry"),
):
    """Add a new key. Fails if the key exists."""
    with handle_errors():
        stored = _key_store(_config()).add(key, value, comment)
    render_status("key", f"Added configuration: {stored} (encoded value)", "green")

@key_app.command(name="get")
def key_get(key: str = typer.Argument(..., help="Key name")):
    """Print the decoded value of a key."""
    with handle_errors():
        value = _key_store(_config()).get(key)
    typer.echo(value)

@key_app.command(name="list")
def key_list(
    filter_: Optional[str] = typer.Option(None, "--filter", "-f", help="Only keys containing this text"),
    show_values: bool = typer.Option(False, "--values", help="Show masked values"),
):
    """List keys in the global store."""
    config = _config()
    store = _key_store(config)
    with handle_errors():
        keys = store.search(filter_) if filter_ else store.keys()
        if not keys:
            render_status("info", "No keys found.")
            return
        protected = _protected(config)
        rows = []
        for k in keys:
            row = [escape(k), "yes" if protected.is_protected(k) else ""]
            if show_values:
                row.append(escape(mask_value(store.get(k))))
            rows.append(row)
    headers = ["Key", "Protected"] + (["Value"] if show_values else [])
    render_table("Configuration Keys", headers, rows)

@key_app.command(name="update")
def key_update(key: str = typer.Argument(...), value: str = typer.Argument(...)):
    """Replace the value of an existing key."""
    with handle_errors():
        _key_store(_config()).update(key, value)
    render_status("key", f"Updated configuration for key: {key}", "green")

@key_app.command(name="remove")
def key_remove(key: str = typer.Argument(...)):
    """Remove a key (refused for protected keys)."""
    with handle_errors():
        _key_store(_config()).remove(key)
    render_status("delete", f"Removed configuration for key: {key}", "green")

@key_app.command(name="rename")
def key_rename(old: str = typer.Argument(...), new: str = typer.Argument(...)):
    """Rename a key (refused for protected keys)."""
    with handle_errors():
        stored = _key_store(_config()).rename(old, new)
    render_status("key", f"Renamed key '{old}' to '{stored}'", "green")


# -- protect --------------------------------------------------------------

@protect_app.command(name="add")
def protect_add(key: str = typer.Argument(...)):
    """Protect a key from remove/rename/update."""
    with handle_errors():
        added = _protected(_config()).add(key)
    if added:
        render_status("protect", f"Key '{key}' is now protected.", "green")
    else:
        render_status("info", f"Key '{key}' was already protected.")

@protect_app.command(name="remove")
def protect_remove(key: str = typer.Argument(...)):
    """Remove a user-managed protection."""
    with handle_errors():
        _protected(_config()).remove(key)
    render_status("protect", f"Key '{key}' is no longer protected.", "green")

@protect_app.command(name="list")
def protect_list():
    """List protected keys."""
    protected = _protected(_config())
    with handle_errors():
        user = protected.user_keys()
    rows = [[escape(k), "built-in"] for k in protected.builtin]
    rows += [[escape(k), "user"] for k in user if k not in protected.builtin]
    render_table("Protected Keys", ["Key", "Source"], rows)

@protect_app.command(name="sync")
def protect_sync():
    """Drop protection records for keys that no longer exist."""
    config = _config()
    with handle_errors():
        stale = _protected(config).sync(_key_store(config))
    if stale:
        render_status("sync", f"Removed stale protected keys: {', '.join(stale)}", "green")
    else:
        render_status("sync", "Protected keys already in sync.")


# -- group ----------------------------------------------------------------

@group_app.command(name="add")
def group_add(name: str = typer.Argument(...), keys: List[str] = typer.Argument(..., help="Keys in the group")):
    """Create a group, or replace the keys of an existing one."""
    with handle_errors():
        created = _groups(_config()).add(name, keys)
    verb = "Created" if created else "Updated"
    render_status("group", f"{verb} group '{name}' with keys: {','.join(keys)}", "green")

@group_app.command(name="update")
def group_update(name: str = typer.Argument(...), keys: List[str] = typer.Argument(...)):
    """Replace the keys of an existing group."""
    with handle_errors():
        _groups(_config()).update(name, keys)
    render_status("group", f"Updated group '{name}' with keys: {','.join(keys)}", "green")

@group_app.command(name="read")
def group_read(name: str = typer.Argument(...)):
    """Print a group's decoded values as JSON."""
    with handle_errors():
        result = _groups(_config()).read(name)
    typer.echo(json.dumps(result.values, indent=2))
    if result.is_partial:
        render_warning(f"Keys no longer in the store: {', '.join(result.missing)}")

@group_app.command(name="list")
def group_list():
    """List groups and their keys."""
    groups = _groups(_config())
    with handle_errors():
        rows = [[escape(name), escape(",".join(groups.keys_of(name)))] for name in groups.names()]
    if not rows:
        render_status("info", "No groups found.")
        return
    render_table("Groups", ["Group", "Keys"], rows)

@group_app.command(name="remove")
def group_remove(name: str = typer.Argument(...)):
    with handle_errors():
        _groups(_config()).remove(name)
    render_status("delete", f"Removed group: {name}", "green")

@group_app.command(name="rename")
def group_rename(old: str = typer.Argument(...), new: str = typer.Argument(...)):
    with handle_errors():
        _groups(_config()).rename(old, new)
    render_status("group", f"Renamed group '{old}' to '{new}'", "green")

@group_app.command(name="clone")
def group_clone(src: str = typer.Argument(...), dst: str = typer.Argument(...)):
    with handle_errors():
        _groups(_config()).clone(src, dst)
    render_status("group", f"Cloned group '{src}' to '{dst}'", "green")

@group_app.command(name="sync")
def group_sync():
    """Drop keys that no longer exist, and groups left empty."""
    with handle_errors():
        report = _groups(_config()).sync()
    if report.is_noop:
        render_status("sync", "Groups already in sync.")
        return
    for name, dropped in report.changed.items():
        render_status("sync", f"Group '{name}': dropped {', '.join(dropped)}", "yellow")
    for name in report.removed:
        render_status("delete", f"Group '{name}' removed (no keys left)", "yellow")


# -- ini ------------------------------------------------------------------

@ini_app.command(name="read")
def ini_read(file: Path = typer.Argument(...), section: str = typer.Argument(...), key: str = typer.Argument(...)):
    """Print the value of a key."""
    with handle_errors():
        value = _ini(file).read(section, key)
    typer.echo(value)

@ini_app.command(name="write")
def ini_write(
    file: Path = typer.Argument(...),
    section: str = typer.Argument(...),
    key: str = typer.Argument(...),
    value: str = typer.Argument(...),
):
    """Insert or update a key, creating the file and section if needed."""
    with handle_errors():
        _ini(file).write(section, key, value)
    render_status("ini", f"Wrote '{key}' to section '{section}'", "green")

@ini_app.command(name="sections")
def ini_sections(file: Path = typer.Argument(...)):
    """List section names in file order."""
    with handle_errors():
        for section in _ini(file).list_sections():
            typer.echo(section)

@ini_app.command(name="keys")
def ini_keys(file: Path = typer.Argument(...), section: str = typer.Argument(...)):
    """List keys of a section."""
    with handle_errors():
        for key in _ini(file).list_keys(section):
            typer.echo(key)

@ini_app.command(name="add-section")
def ini_add_section(file: Path = typer.Argument(...), section: str = typer.Argument(...)):
    with handle_errors():
        added = _ini(file).add_section(section)
    if added:
        render_status("ini", f"Added section: {section}", "green")
    else:
        render_status("info", f"Section already exists: {section}")

@ini_app.command(name="remove-section")
def ini_remove_section(file: Path = typer.Argument(...), section: str = typer.Argument(...)):
    with handle_errors():
        _ini(file).remove_section(section)
    render_status("delete", f"Removed section '{section}'", "green")

@ini_app.command(name="remove-key")
def ini_remove_key(file: Path = typer.Argument(...), section: str = typer.Argument(...), key: str = typer.Argument(...)):
    with handle_errors():
        _ini(file).remove_key(section, key)
    render_status("delete", f"Removed key '{key}' from section '{section}'", "green")

@ini_app.command(name="rename-section")
def ini_rename_section(file: Path = typer.Argument(...), old: str = typer.Argument(...), new: str = typer.Argument(...)):
    with handle_errors():
        _ini(file).rename_section(old, new)
    render_status("ini", f"Renamed section '{old}' to '{new}'", "green")

@ini_app.command(name="clone-section")
def ini_clone_section(file: Path = typer.Argument(...), src: str = typer.Argument(...), dst: str = typer.Argument(...)):
    with handle_errors():
        _ini(file).clone_section(src, dst)
    render_status("ini", f"Cloned section '{src}' to '{dst}'", "green")

@ini_app.command(name="set-array")
def ini_set_array(
    file: Path = typer.Argument(...),
    section: str = typer.Argument(...),
    key: str = typer.Argument(...),
    values: List[str] = typer.Argument(None),
):
    """Store a list of values under one key."""
    with handle_errors():
        _ini(file).set_array_value(section, key, values or [])
    render_status("ini", f"Wrote array value for key '{key}' to section '{section}'", "green")

@ini_app.command(name="get-array")
def ini_get_array(file: Path = typer.Argument(...), section: str = typer.Argument(...), key: str = typer.Argument(...)):
    """Print each element of an array value on its own line."""
    with handle_errors():
        for item in _ini(file).get_array_value(section, key):
            typer.echo(item)

@ini_app.command(name="env")
def ini_env(
    file: Path = typer.Argument(...),
    prefix: Optional[str] = typer.Option(None, "--prefix", "-p"),
    section: Optional[str] = typer.Option(None, "--section", "-s"),
    unset: bool = typer.Option(False, "--unset", help="Print unset lines instead of exports"),
):
    """Print shell export (or unset) lines for the file's entries, for use with eval."""
    with handle_errors():
        if unset:
            for name in _ini(file).destroy_env(prefix, section, environ={}):
                typer.echo(f"unset {name}")
        else:
            for name, value in _ini(file).expose_env(prefix, section, environ={}).items():
                typer.echo(f"export {name}={shlex.quote(value)}")


# -- profile --------------------------------------------------------------

@profile_app.command(name="add")
def profile_add(name: str = typer.Argument(...)):
    """Create an empty profile."""
    with handle_errors():
        path = _workspaces(_config()).add_profile(name)
    render_status("profile", f"Profile '{name}' created at '{path}'", "green")

@profile_app.command(name="list")
def profile_list():
    """List profiles under the workspace root."""
    workspaces = _workspaces(_config())
    rows = []
    with handle_errors():
        for name in workspaces.list_profiles():
            try:
                info = workspaces.profile_info(name)
            except InvalidNameError:
                rows.append([escape(name), "[red]invalid profile name[/]", ""])
                continue
            rows.append([escape(name), "yes" if info.has_conf else "[red]missing[/]", escape(", ".join(info.ssh_confs))])
    if not rows:
        render_status("info", "No profiles found.")
        return
    render_table("Profiles", ["Name", "profile.conf", "SSH confs"], rows)

@profile_app.command(name="clone")
def profile_clone(src: str = typer.Argument(...), dst: str = typer.Argument(...)):
    with handle_errors():
        _workspaces(_config()).clone_profile(src, dst)
    render_status("profile", f"Cloned profile '{src}' to '{dst}'", "green")

@profile_app.command(name="rename")
def profile_rename(old: str = typer.Argument(...), new: str = typer.Argument(...)):
    with handle_errors():
        _workspaces(_config()).rename_profile(old, new)
    render_status("profile", f"Renamed profile '{old}' to '{new}'", "green")

@profile_app.command(name="remove")
def profile_remove(
    name: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Delete a profile directory and everything in it."""
    if not yes and not confirm(f"Remove profile '{name}' and all of its files?"):
        raise typer.Exit(0)
    with handle_errors():
        _workspaces(_config()).remove_profile(name)
    render_status("delete", f"Profile '{name}' removed.", "green")

@profile_app.command(name="set")
def profile_set(
    profile: str = typer.Argument(...),
    key: str = typer.Argument(...),
    value: str = typer.Argument(...),
    comment: Optional[str] = typer.Option(None, "--comment", "-c"),
):
    """Add a key to a profile's conf."""
    with handle_errors():
        stored = _workspaces(_config()).add_profile_conf(profile, key, value, comment)
    render_status("key", f"Added '{stored}' to profile '{profile}'", "green")

@profile_app.command(name="get")
def profile_get(profile: str = typer.Argument(...), key: str = typer.Argument(...)):
    with handle_errors():
        value = _workspaces(_config()).get_profile_conf_value(profile, key)
    typer.echo(value)

@profile_app.command(name="update")
def profile_update(profile: str = typer.Argument(...), key: str = typer.Argument(...), value: str = typer.Argument(...)):
    with handle_errors():
        _workspaces(_config()).update_profile_conf(profile, key, value)
    render_status("key", f"Updated '{key}' in profile '{profile}'", "green")

@profile_app.command(name="unset")
def profile_unset(profile: str = typer.Argument(...), key: str = typer.Argument(...)):
    with handle_errors():
        _workspaces(_config()).remove_profile_conf_key(profile, key)
    render_status("delete", f"Removed '{key}' from profile '{profile}'", "green")

@profile_app.command(name="rename-key")
def profile_rename_key(profile: str = typer.Argument(...), old: str = typer.Argument(...), new: str = typer.Argument(...)):
    with handle_errors():
        stored = _workspaces(_config()).rename_profile_conf_key(profile, old, new)
    render_status("key", f"Renamed '{old}' to '{stored}' in profile '{profile}'", "green")

@profile_app.command(name="show")
def profile_show(profile: str = typer.Argument(...)):
    """Show a profile's keys with masked values."""
    with handle_errors():
        items = _workspaces(_config()).profile_conf_items(profile)
    rows = [[escape(k), escape(mask_value(v))] for k, v in items.items()]
    render_table(f"Profile {profile}", ["Key", "Value"], rows)


# -- workspace ------------------------------------------------------------

@workspace_app.command(name="add")
def workspace_add(
    name: str = typer.Argument(...),
    ssh_files: Optional[List[str]] = typer.Option(None, "--ssh", help="SSH conf to create (repeatable)"),
):
    """Create a workspace: profile.conf plus populated .ssh confs."""
    workspaces = _workspaces(_config())
    with handle_errors():
        path = workspaces.add_workspace(name, ssh_files) if ssh_files else workspaces.add_workspace(name)
    render_status("workspace", f"Workspace '{name}' created at '{path}'", "green")

@workspace_app.command(name="clone")
def workspace_clone(src: str = typer.Argument(...), dst: str = typer.Argument(...)):
    with handle_errors():
        _workspaces(_config()).clone_workspace(src, dst)
    render_status("workspace", f"Cloned workspace '{src}' to '{dst}'", "green")

@workspace_app.command(name="show")
def workspace_show(name: str = typer.Argument(...)):
    """Render a workspace as a tree."""
    workspaces = _workspaces(_config())
    with handle_errors():
        info = workspaces.profile_info(name)
        keys = workspaces.profile_store(name).keys() if info.has_conf else []
        confs = {conf: list(dict.fromkeys(workspaces.ssh_conf(name, conf).list_sections())) for conf in info.ssh_confs}
    render_tree(build_workspace_tree(name, keys, confs), title=f"Workspace {name}")

@workspace_app.command(name="ssh-add")
def workspace_ssh_add(name: str = typer.Argument(...), conf: str = typer.Argument(..., help="e.g. kafka or kafka.conf")):
    """Add a populated SSH conf to a workspace."""
    with handle_errors():
        path = _workspaces(_config()).add_ssh_conf(name, conf)
    render_status("workspace", f"Created {path}", "green")

@workspace_app.command(name="ssh-remove")
def workspace_ssh_remove(name: str = typer.Argument(...), conf: str = typer.Argument(...)):
    with handle_errors():
        _workspaces(_config()).remove_ssh_conf(name, conf)
    render_status("delete", f"Removed {conf} from workspace '{name}'", "green")

@workspace_app.command(name="resolve")
def workspace_resolve(
    name: str = typer.Argument(...),
    conf: str = typer.Argument(...),
    section: str = typer.Argument(..., help="Environment section, e.g. dev"),
):
    """Print the effective configuration ([base] overlaid by the section) as JSON."""
    with handle_errors():
        merged = _workspaces(_config()).resolve_effective_config(name, conf, section)
    typer.echo(json.dumps(merged, indent=2))

@workspace_app.command(name="tunnel")
def workspace_tunnel(name: str = typer.Argument(...), conf: str = typer.Argument(...), section: str = typer.Argument(...)):
    """Print the ssh command that opens the tunnel for an environment."""
    with handle_errors():
        try:
            tunnel = _workspaces(_config()).tunnel(name, conf, section)
        except ModelValidationError as e:
            render_error(f"Incomplete tunnel settings: {e}")
            raise typer.Exit(1)
    typer.echo(shlex.join(tunnel.ssh_args()))

@workspace_app.command(name="populate")
def workspace_populate(path: Path = typer.Argument(..., help="Directory holding the conf"), file_name: str = typer.Argument(...)):
    """Write the default [base]/[dev]/[uat] sections into an SSH conf."""
    config = _config()
    with handle_errors():
        written = populate_ssh_conf(path, file_name, config.ini, _audit(config))
    render_status("ini", f"Populated {written}", "green")


# -- shield ---------------------------------------------------------------

@shield_app.command(name="keygen")
def shield_keygen(nbytes: int = typer.Option(32, "--bytes", "-b", min=1)):
    """Print a random hex key."""
    typer.echo(generate_random_key(nbytes))

@shield_app.command(name="encrypt")
def shield_encrypt(
    value: str = typer.Argument(...),
    key: Optional[str] = typer.Option(None, "--key", help="64 hex chars; defaults to the stored shield key"),
    iv: Optional[str] = typer.Option(None, "--iv", help="32 hex chars; defaults to the stored shield IV"),
):
    """Encrypt a value with AES-256-CBC."""
    with handle_errors():
        if key and iv:
            token = encrypt_value(value, key, iv)
        else:
            token = Shield(_key_store(_config())).encrypt(value)
    typer.echo(token)

@shield_app.command(name="decrypt")
def shield_decrypt(
    token: str = typer.Argument(...),
    key: Optional[str] = typer.Option(None, "--key"),
    iv: Optional[str] = typer.Option(None, "--iv"),
):
    """Decrypt a value produced by 'shield encrypt'."""
    with handle_errors():
        if key and iv:
            value = decrypt_value(token, key, iv)
        else:
            value = Shield(_key_store(_config())).decrypt(token)
    typer.echo(value)

@shield_app.command(name="store")
def shield_store(key: str = typer.Argument(...), value: str = typer.Argument(...)):
    """Add a key whose value is stored encrypted."""
    with handle_errors():
        stored = Shield(_key_store(_config())).store_secret(key, value)
    render_status("encrypt", f"Added encrypted configuration: {stored}", "green")

@shield_app.command(name="reveal")
def shield_reveal(key: str = typer.Argument(...)):
    """Print the decrypted value of a key added with 'shield store'."""
    with handle_errors():
        value = Shield(_key_store(_config())).reveal_secret(key)
    typer.echo(value)

@shield_app.command(name="encrypt-file")
def shield_encrypt_file(
    src: Path = typer.Argument(...),
    dst: Path = typer.Argument(...),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True, confirmation_prompt=True),
):
    """Encrypt a file with a password."""
    with handle_errors():
        encrypt_file(src, dst, password)
    render_status("encrypt", f"Encrypted {src} -> {dst}", "green")

@shield_app.command(name="decrypt-file")
def shield_decrypt_file(
    src: Path = typer.Argument(...),
    dst: Path = typer.Argument(...),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True),
):
    """Decrypt a file produced by 'shield encrypt-file'."""
    with handle_errors():
        decrypt_file(src, dst, password)
    render_status("encrypt", f"Decrypted {src} -> {dst}", "green")


# -- misc -----------------------------------------------------------------

@app.command(name="audit")
def show_audit(last_n: int = typer.Option(50, "--last", "-n", help="Number of recent events to show")):
    """Show recent audit events."""
    events = get_audit_log(_config().audit_file, last_n)
    if not events:
        render_status("info", "No audit events found.")
        return

    rows = []
    for e in events:
        rows.append([e["timestamp"], e["event"], escape(str(e["details"]))])

    render_table("Audit Log", ["Timestamp", "Event", "Details"], rows)

@app.command(name="doctor")
def run_doctor():
    """Run the diagnostic checks."""
    from .doctor import run_diagnostics

    results = run_diagnostics(_config())
    rows = []
    for r in results:
        status_text = "[bold green]PASS[/]" if r.status == "pass" else "[bold yellow]WARN[/]" if r.status == "warn" else "[bold red]FAIL[/]"
        rows.append([status_text, r.name, escape(r.detail)])

    render_table("shellconf Doctor", ["Status", "Check", "Details"], rows)
    if any(r.status == "fail" for r in results):
        raise typer.Exit(1)

@app.command(name="version")
def version_cmd():
    """Display shellconf version information."""
    console.print(f"[bold cyan]SHELLCONF[/] v{VERSION}")


if __name__ == "__main__":
    app()
