import pytest

from shellconf.config import ConfigRoot
from shellconf.errors import (
    InvalidNameError,
    KeyExistsError,
    ProfileExistsError,
    ProfileNotFoundError,
    SshConfExistsError,
    SshConfNotFoundError,
)
from shellconf.ini import IniFile
from shellconf.workspace import DEFAULT_SSH_FILES, PROFILE_CONF, SERVICE_PRESETS, WorkspaceManager, populate_ssh_conf


@pytest.fixture
def manager(config_root: ConfigRoot) -> WorkspaceManager:
    return WorkspaceManager(config_root)

def test_add_profile(manager: WorkspaceManager):
    path = manager.add_profile("dev")
    assert (path / PROFILE_CONF).is_file()
    assert manager.list_profiles() == ["dev"]
    assert manager.exists("dev")

    with pytest.raises(ProfileExistsError):
        manager.add_profile("dev")

def test_add_profile_leaves_no_staging_dirs(manager: WorkspaceManager):
    manager.add_profile("dev")
    assert [p.name for p in manager.root.iterdir()] == ["dev"]

def test_add_profile_repairs_directory_without_conf(manager: WorkspaceManager):
    (manager.root / "broken").mkdir(parents=True)
    manager.add_profile("broken")
    assert manager.profile_info("broken").has_conf

@pytest.mark.parametrize("name", ["", "../escape", "a/b", ".", ".."])
def test_invalid_profile_names(manager: WorkspaceManager, name: str):
    with pytest.raises(InvalidNameError):
        manager.add_profile(name)

def test_clone_rename_remove_profile(manager: WorkspaceManager):
    manager.add_profile("dev")
    manager.add_profile_conf("dev", "DB_URL", "postgres://localhost")

    manager.clone_profile("dev", "staging")
    assert manager.get_profile_conf_value("staging", "DB_URL") == "postgres://localhost"

    manager.rename_profile("staging", "prod")
    assert manager.list_profiles() == ["dev", "prod"]
    with pytest.raises(ProfileExistsError):
        manager.rename_profile("prod", "dev")

    manager.remove_profile("prod")
    assert manager.list_profiles() == ["dev"]
    with pytest.raises(ProfileNotFoundError):
        manager.remove_profile("prod")

def test_clone_missing_profile(manager: WorkspaceManager):
    with pytest.raises(ProfileNotFoundError):
        manager.clone_profile("ghost", "copy")
    assert manager.list_profiles() == []

def test_profile_conf_keys(manager: WorkspaceManager):
    manager.add_profile("dev")
    assert manager.add_profile_conf("dev", "db url", "x", comment="connection") == "DB_URL"
    with pytest.raises(KeyExistsError):
        manager.add_profile_conf("dev", "DB_URL", "y")

    manager.update_profile_conf("dev", "DB_URL", "y")
    assert manager.get_profile_conf_value("dev", "DB_URL") == "y"

    assert manager.rename_profile_conf_key("dev", "DB_URL", "database_url") == "DATABASE_URL"
    assert manager.profile_conf_items("dev") == {"DATABASE_URL": "y"}

    manager.remove_profile_conf_key("dev", "DATABASE_URL")
    assert manager.profile_conf_items("dev") == {}

def test_protected_names_are_allowed_in_profiles(manager: WorkspaceManager):
    manager.add_profile("dev")
    manager.add_profile_conf("dev", "HOST", "10.0.0.1")
    manager.remove_profile_conf_key("dev", "HOST")

def test_profile_conf_on_missing_profile(manager: WorkspaceManager):
    with pytest.raises(ProfileNotFoundError):
        manager.get_profile_conf_value("ghost", "KEY")

def test_add_workspace_bundle(manager: WorkspaceManager):
    manager.add_workspace("shop")
    info = manager.profile_info("shop")
    assert info.has_conf
    assert info.ssh_confs == sorted(DEFAULT_SSH_FILES)

    with pytest.raises(ProfileExistsError):
        manager.add_workspace("shop")

def test_ssh_conf_layout(manager: WorkspaceManager):
    manager.add_workspace("shop", ["db"])
    conf = manager.ssh_conf("shop", "db")
    assert list(conf.list_sections()) == ["base", "dev", "uat"]
    assert conf.read("base", "SSH_LOCAL_PORT") == "5432"
    assert conf.read("base", "DB_ENGINE") == "postgres"
    assert conf.read("base", "SSH_DESC") == "db tunnel"

def test_resolve_effective_config(manager: WorkspaceManager):
    manager.add_workspace("shop", ["db.conf"])

    base = manager.resolve_effective_config("shop", "db", "base")
    assert base["SSH_SERVER_PORT"] == "22"

    dev = manager.resolve_effective_config("shop", "db", "dev")
    assert dev["SSH_SERVER_PORT"] == "2222"
    assert dev["SSH_LOCAL_PORT"] == "5432"
    assert dev["SSH_SERVER_USER"] == "sysadmin"

    uat = manager.resolve_effective_config("shop", "db", "uat")
    assert uat["SSH_SERVER_PORT"] == "2223"
    assert uat["SSH_LOCAL_PORT"] == "5433"
    assert uat["SSH_REMOTE_PORT"] == "5432"

def test_section_override_wins(manager: WorkspaceManager):
    manager.add_workspace("shop", ["redis"])
    manager.ssh_conf("shop", "redis").write("dev", "SSH_SERVER_ADDR", "10.1.1.1")
    merged = manager.resolve_effective_config("shop", "redis", "dev")
    assert merged["SSH_SERVER_ADDR"] == "10.1.1.1"
    assert manager.resolve_effective_config("shop", "redis", "base")["SSH_SERVER_ADDR"] == "127.0.0.1"

def test_service_extra_keys(tmp_path):
    populate_ssh_conf(tmp_path, "kafka")
    populate_ssh_conf(tmp_path, "nginx.conf")
    populate_ssh_conf(tmp_path, "custom")

    assert IniFile(tmp_path / "kafka.conf").read("base", "KAFKA_BOOTSTRAP_SERVERS") == "127.0.0.1:9092"
    assert IniFile(tmp_path / "nginx.conf").read("base", "NGINX_SERVER_NAME") == "localhost"
    assert IniFile(tmp_path / "custom.conf").read("base", "SSH_LOCAL_PORT") == "8080"

def test_private_key_reference_uses_home(tmp_path):
    populate_ssh_conf(tmp_path, "redis", home=tmp_path / "user")
    ref = IniFile(tmp_path / "redis.conf").read("base", "SSH_PRIVATE_KEY_REF")
    assert ref == str(tmp_path / "user" / ".ssh" / "id_rsa")

def test_add_and_remove_ssh_conf(manager: WorkspaceManager):
    manager.add_profile("shop")
    manager.add_ssh_conf("shop", "kafka")
    assert manager.list_ssh_confs("shop") == ["kafka.conf"]

    with pytest.raises(SshConfExistsError):
        manager.add_ssh_conf("shop", "kafka.conf")

    manager.remove_ssh_conf("shop", "kafka")
    assert manager.list_ssh_confs("shop") == []
    with pytest.raises(SshConfNotFoundError):
        manager.ssh_conf("shop", "kafka")

def test_clone_workspace_copies_ssh_confs(manager: WorkspaceManager):
    manager.add_workspace("shop", ["db", "redis"])
    manager.add_profile_conf("shop", "TEAM", "payments")
    manager.clone_workspace("shop", "shop2")

    info = manager.profile_info("shop2")
    assert info.ssh_confs == ["db.conf", "redis.conf"]
    assert manager.get_profile_conf_value("shop2", "TEAM") == "payments"

def test_tunnel_args(manager: WorkspaceManager):
    manager.add_workspace("shop", ["db"])
    tunnel = manager.tunnel("shop", "db", "dev")
    args = tunnel.ssh_args()

    assert args[:4] == ["ssh", "-N", "-L", "127.0.0.1:5432:127.0.0.1:5432"]
    assert args[args.index("-p") + 1] == "2222"
    assert "-i" in args
    assert args[-1] == "sysadmin@127.0.0.1"

def test_audit_records_profile_events(manager: WorkspaceManager, config_root: ConfigRoot):
    manager.add_profile("dev")
    manager.remove_profile("dev")
    text = config_root.audit_file.read_text()
    assert '"profile.add"' in text
    assert '"profile.remove"' in text

def test_base_values_overlaid_by_section(manager: WorkspaceManager):
    manager.add_profile("svc")
    ssh = manager.ssh_dir("svc")
    ssh.mkdir()
    (ssh / "app.conf").write_text("[base]\nhost=a\nport=1\n\n[dev]\nport=2\n")
    assert manager.resolve_effective_config("svc", "app", "dev") == {"host": "a", "port": "2"}

def test_preset_extras_are_read_only():
    with pytest.raises(TypeError):
        SERVICE_PRESETS["redis.conf"].extra["SHARED"] = "leak"
    assert SERVICE_PRESETS["mongo.conf"].extra == {}
