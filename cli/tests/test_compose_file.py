import pytest

from terrarium_deploy.compose_file import find_compose_file, read_compose_services, reconcile_topology
from terrarium_deploy.errors import ConfigurationError
from terrarium_deploy.topology import ServiceDescriptor


def _services() -> list[ServiceDescriptor]:
    return [
        ServiceDescriptor("postgres", "terrarium-git-postgres", 1, lambda: True),
        ServiceDescriptor("gitea", "terrarium-git-server", 2, lambda: True, depends_on=("postgres",)),
        ServiceDescriptor("watchtower", "terrarium-git-watchtower", 3, lambda: True, required=False),
    ]


def test_find_compose_file_prefers_docker_compose_yml(tmp_path) -> None:
    (tmp_path / "compose.yaml").write_text("services: {}\n", encoding="utf-8")
    (tmp_path / "docker-compose.yml").write_text("services: {}\n", encoding="utf-8")

    assert find_compose_file(tmp_path) == tmp_path / "docker-compose.yml"


def test_read_compose_services(tmp_path) -> None:
    path = tmp_path / "docker-compose.yml"
    path.write_text("services:\n  postgres:\n    image: postgres\n  gitea:\n    image: gitea/gitea\n", encoding="utf-8")

    assert read_compose_services(path) == {"postgres", "gitea"}


def test_invalid_yaml_is_a_configuration_error(tmp_path) -> None:
    path = tmp_path / "docker-compose.yml"
    path.write_text("services: [unclosed\n", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        read_compose_services(path)


def test_missing_compose_file(tmp_path) -> None:
    with pytest.raises(ConfigurationError, match="No compose file"):
        reconcile_topology(_services(), tmp_path)


def test_missing_required_service_is_fatal(tmp_path) -> None:
    (tmp_path / "docker-compose.yml").write_text("services:\n  postgres: {}\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="gitea"):
        reconcile_topology(_services(), tmp_path)


def test_missing_optional_service_is_dropped(tmp_path) -> None:
    (tmp_path / "docker-compose.yml").write_text("services:\n  postgres: {}\n  gitea: {}\n", encoding="utf-8")

    result = reconcile_topology(_services(), tmp_path)

    assert [s.name for s in result.services] == ["postgres", "gitea"]
    assert result.dropped == ["watchtower"]
