import os
import stat

import pytest

from terrarium_deploy.errors import SecretStoreError
from terrarium_deploy.secret_store import (
    DEFAULT_SECRET_SPECS,
    PLACEHOLDER,
    SecretSpec,
    SecretState,
    SecretStore,
    generate_minio_user,
    generate_password,
)


def test_generate_password_is_alphanumeric() -> None:
    value = generate_password()
    assert len(value) == 24
    assert value.isalnum()


def test_generate_minio_user_format() -> None:
    user = generate_minio_user()
    assert user.startswith("admin-")
    assert len(user) == len("admin-") + 8


def test_ensure_generates_once(tmp_path) -> None:
    store = SecretStore(tmp_path / ".secrets")
    calls = {"count": 0}

    def _gen() -> str:
        calls["count"] += 1
        return f"value-{calls['count']}"

    first = store.ensure("postgres-password", _gen)
    second = store.ensure("postgres-password", _gen)

    assert first == second == "value-1"
    assert calls["count"] == 1
    assert store.writes == 1


def test_secret_files_are_owner_only(tmp_path) -> None:
    store = SecretStore(tmp_path / ".secrets")
    store.ensure("admin-password", lambda: "s3cret")

    mode = stat.S_IMODE(os.stat(store.path_for("admin-password")).st_mode)
    assert mode == 0o600
    assert stat.S_IMODE(os.stat(store.root).st_mode) == 0o700


@pytest.mark.parametrize("content", ["", "\n", f"{PLACEHOLDER}\n"])
def test_empty_or_placeholder_reads_as_absent(tmp_path, content) -> None:
    store = SecretStore(tmp_path)
    store.path_for("admin-password").write_text(content, encoding="utf-8")

    record = store.read("admin-password")
    assert record.state is SecretState.ABSENT
    assert record.value is None
    assert store.ensure("admin-password", lambda: "fresh") == "fresh"


def test_multi_value_record(tmp_path) -> None:
    store = SecretStore(tmp_path)
    spec = SecretSpec("minio-credentials", {"MINIO_ROOT_USER": lambda: "admin-1", "MINIO_ROOT_PASSWORD": lambda: "pw"})

    values = store.ensure_spec(spec)
    record = store.read(spec.name, spec.keys)

    assert values == {"MINIO_ROOT_USER": "admin-1", "MINIO_ROOT_PASSWORD": "pw"}
    assert record.state is SecretState.GENERATED
    assert record.values == values
    assert "MINIO_ROOT_USER=admin-1" in store.path_for(spec.name).read_text(encoding="utf-8")


def test_adopt_keeps_existing_record(tmp_path) -> None:
    store = SecretStore(tmp_path)
    spec = DEFAULT_SECRET_SPECS[0]
    store.ensure(spec.name, lambda: "stored")

    assert store.adopt(spec, {"POSTGRES_PASSWORD": "from-env"}) == {"POSTGRES_PASSWORD": "stored"}
    assert store.writes == 1


def test_records_skip_dotfiles(tmp_path) -> None:
    store = SecretStore(tmp_path)
    store.ensure("admin-password", lambda: "x")
    (tmp_path / ".keep").write_text("", encoding="utf-8")

    assert [record.name for record in store.records()] == ["admin-password"]


def test_unwritable_store_raises(tmp_path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("", encoding="utf-8")
    store = SecretStore(blocker / "secrets")

    with pytest.raises(SecretStoreError):
        store.ensure("admin-password", lambda: "x")


def test_purge_removes_directory(tmp_path) -> None:
    store = SecretStore(tmp_path / ".secrets")
    store.ensure("admin-password", lambda: "x")

    assert store.purge() is True
    assert not store.root.exists()
    assert store.purge() is False


def test_records_read_multi_value_specs(tmp_path) -> None:
    store = SecretStore(tmp_path)
    for spec in DEFAULT_SECRET_SPECS:
        store.ensure_spec(spec)

    records = {record.name: record for record in store.records()}

    minio = records["minio-credentials"]
    assert minio.state is SecretState.GENERATED
    assert set(minio.values) == {"MINIO_ROOT_USER", "MINIO_ROOT_PASSWORD"}
    assert minio.values["MINIO_ROOT_USER"].startswith("admin-")
    assert records["admin-password"].value is not None
