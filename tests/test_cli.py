import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from shellconf.cli import app

runner = CliRunner()


@pytest.fixture
def env(tmp_path: Path):
    return {"SHELLCONF_HOME": str(tmp_path / "home")}

def invoke(env, *args: str):
    return runner.invoke(app, list(args), env=env)

def test_version(env):
    result = invoke(env, "version")
    assert result.exit_code == 0
    assert "0.1.0" in result.output

def test_key_add_get(env):
    assert invoke(env, "key", "add", "api key", "secret").exit_code == 0
    result = invoke(env, "key", "get", "API_KEY")
    assert result.exit_code == 0
    assert result.output == "secret\n"

def test_key_errors_exit_nonzero(env):
    assert invoke(env, "key", "get", "MISSING").exit_code == 1
    assert invoke(env, "key", "add", "HOST", "127.0.0.1").exit_code == 0
    assert invoke(env, "key", "remove", "HOST").exit_code == 1
    assert invoke(env, "key", "get", "HOST").output == "127.0.0.1\n"

def test_group_read_outputs_json(env):
    invoke(env, "key", "add", "A", "alpha")
    invoke(env, "key", "add", "B", "beta")
    assert invoke(env, "group", "add", "g1", "A", "B").exit_code == 0

    result = invoke(env, "group", "read", "g1")
    assert result.exit_code == 0
    assert json.loads(result.output) == {"A": "alpha", "B": "beta"}

def test_ini_write_read_and_env(env, tmp_path: Path):
    file = str(tmp_path / "app.ini")
    assert invoke(env, "ini", "write", file, "db", "host", "localhost").exit_code == 0
    assert invoke(env, "ini", "read", file, "db", "host").output == "localhost\n"

    result = invoke(env, "ini", "env", file, "--prefix", "app")
    assert result.exit_code == 0
    assert "export APP_DB_HOST=localhost" in result.output

    result = invoke(env, "ini", "env", file, "--prefix", "app", "--unset")
    assert "unset APP_DB_HOST" in result.output

def test_ini_missing_file(env, tmp_path: Path):
    result = invoke(env, "ini", "read", str(tmp_path / "nope.ini"), "s", "k")
    assert result.exit_code == 1

def test_workspace_resolve_and_tunnel(env):
    assert invoke(env, "workspace", "add", "shop", "--ssh", "db").exit_code == 0

    result = invoke(env, "workspace", "resolve", "shop", "db", "uat")
    assert result.exit_code == 0
    merged = json.loads(result.output)
    assert merged["SSH_LOCAL_PORT"] == "5433"

    result = invoke(env, "workspace", "tunnel", "shop", "db", "dev")
    assert result.exit_code == 0
    assert result.output.startswith("ssh -N -L 127.0.0.1:5432:127.0.0.1:5432 -p 2222")

def test_profile_remove_requires_confirmation(env):
    invoke(env, "profile", "add", "dev")
    result = runner.invoke(app, ["profile", "remove", "dev"], input="n\n", env=env)
    assert result.exit_code == 0
    assert "dev" in invoke(env, "profile", "list").output

    assert invoke(env, "profile", "remove", "dev", "--yes").exit_code == 0
    assert invoke(env, "profile", "get", "dev", "X").exit_code == 1

def test_shield_store_reveal(env):
    assert invoke(env, "shield", "store", "db_pass", "hunter2").exit_code == 0
    result = invoke(env, "shield", "reveal", "DB_PASS")
    assert result.output == "hunter2\n"

def test_audit_lists_events(env):
    invoke(env, "key", "add", "A", "alpha")
    result = invoke(env, "audit")
    assert result.exit_code == 0
    assert "key.add" in result.output

def test_profile_list_flags_foreign_directories(env, tmp_path: Path):
    invoke(env, "profile", "add", "dev")
    (tmp_path / "home" / "workspace" / "bad name").mkdir()

    result = invoke(env, "profile", "list")
    assert result.exit_code == 0
    assert "dev" in result.output
    assert "invalid profile name" in result.output
