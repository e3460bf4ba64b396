"""Tests for CommandResolver launch plans."""

from pathlib import Path

import pytest

from launch_control.engine.errors import ConfigurationError, ToolNotFoundError
from launch_control.engine.resolver import CommandResolver
from launch_control.models.workload import (
    CondaWorkload,
    DockerComposeWorkload,
    DockerImageWorkload,
    LocalWorkload,
    WorkloadKind,
)


def _never_exists(docker: str, tag: str) -> bool:
    return False


class TestDockerImage:
    def test_nginx_plan(self, bin_locator, bin_dir: Path, make_script, tmp_path: Path) -> None:
        docker = make_script(bin_dir / "docker", "exit 0\n")
        resolver = CommandResolver(bin_locator, cwd=tmp_path, image_exists=_never_exists)
        spec = DockerImageWorkload(id="web", image="nginx:latest", ports=("8080:80",))

        plan = resolver.resolve(spec)

        assert plan.argv == (
            str(docker), "run", "-d", "--rm", "--name", "app-web", "-p", "8080:80", "nginx:latest"
        )
        assert plan.container is True
        assert plan.prelaunch == ()
        assert plan.shell_command is None

    def test_all_flags(self, bin_locator, bin_dir: Path, make_script, tmp_path: Path) -> None:
        docker = str(make_script(bin_dir / "docker", "exit 0\n"))
        resolver = CommandResolver(bin_locator, cwd=tmp_path)
        spec = DockerImageWorkload(
            id="api",
            image="api:2",
            ports=("80:80", "443:443"),
            volumes=("/data:/data",),
            env_vars=("MODE=prod",),
            network="backend",
        )
        assert resolver.resolve(spec).argv == (
            docker, "run", "-d", "--rm", "--name", "app-api",
            "-p", "80:80", "-p", "443:443",
            "-v", "/data:/data",
            "-e", "MODE=prod",
            "--network", "backend",
            "api:2",
        )

    def test_resolution_is_deterministic(self, bin_locator, bin_dir: Path, make_script, tmp_path: Path) -> None:
        make_script(bin_dir / "docker", "exit 0\n")
        resolver = CommandResolver(bin_locator, cwd=tmp_path, image_exists=_never_exists)
        spec = DockerImageWorkload(id="web", image="nginx:latest", ports=("8080:80",))
        assert resolver.resolve(spec) == resolver.resolve(spec)

    def test_missing_docker(self, empty_locator, tmp_path: Path) -> None:
        resolver = CommandResolver(empty_locator, cwd=tmp_path)
        with pytest.raises(ToolNotFoundError, match="docker not found"):
            resolver.resolve(DockerImageWorkload(id="web", image="nginx"))

    def test_incomplete_config(self, bin_locator, tmp_path: Path) -> None:
        resolver = CommandResolver(bin_locator, cwd=tmp_path)
        with pytest.raises(ConfigurationError, match="incomplete"):
            resolver.resolve(DockerImageWorkload(id="web"))

    def test_archive_loaded_when_image_missing(self, bin_locator, bin_dir: Path, make_script, tmp_path: Path) -> None:
        docker = str(make_script(bin_dir / "docker", "exit 0\n"))
        resolver = CommandResolver(
            bin_locator,
            cwd=tmp_path,
            image_exists=_never_exists,
            archive_tag=lambda archive: "myapp:1.0",
        )
        plan = resolver.resolve(DockerImageWorkload(id="app", image_archive="images/app.tar"))

        assert plan.prelaunch == ((docker, "load", "-i", str(tmp_path / "images" / "app.tar")),)
        assert plan.argv[-1] == "myapp:1.0"

    def test_archive_skipped_when_tag_present(self, bin_locator, bin_dir: Path, make_script, tmp_path: Path) -> None:
        make_script(bin_dir / "docker", "exit 0\n")
        inspected = []

        def exists(docker: str, tag: str) -> bool:
            inspected.append(tag)
            return tag == "myapp:1.0"

        resolver = CommandResolver(bin_locator, cwd=tmp_path, image_exists=exists)
        plan = resolver.resolve(
            DockerImageWorkload(id="app", image="myapp:1.0", image_archive="/srv/app.tar")
        )
        assert plan.prelaunch == ()
        assert inspected == ["myapp:1.0"]

    def test_archive_tag_from_manifest_already_present(
        self, bin_locator, bin_dir: Path, make_script, tmp_path: Path
    ) -> None:
        make_script(bin_dir / "docker", "exit 0\n")
        resolver = CommandResolver(
            bin_locator,
            cwd=tmp_path,
            image_exists=lambda docker, tag: tag == "myapp:1.0",
            archive_tag=lambda archive: "myapp:1.0",
        )
        plan = resolver.resolve(DockerImageWorkload(id="app", image_archive="/srv/app.tar"))
        assert plan.prelaunch == ()
        assert plan.argv[-1] == "myapp:1.0"

    def test_archive_without_tag(self, bin_locator, bin_dir: Path, make_script, tmp_path: Path) -> None:
        make_script(bin_dir / "docker", "exit 0\n")
        resolver = CommandResolver(
            bin_locator, cwd=tmp_path, image_exists=_never_exists, archive_tag=lambda archive: None
        )
        with pytest.raises(ConfigurationError, match="image not specified"):
            resolver.resolve(DockerImageWorkload(id="app", image_archive="/srv/app.tar"))

    def test_compose_file_as_image_is_reinterpreted(
        self, bin_locator, bin_dir: Path, make_script, tmp_path: Path
    ) -> None:
        compose = str(make_script(bin_dir / "docker-compose", "exit 0\n"))
        (tmp_path / "stack.yml").write_text("services: {}\n")
        resolver = CommandResolver(bin_locator, cwd=tmp_path)
        spec = DockerImageWorkload(id="stack", image="stack.yml")

        assert resolver.normalize(spec).kind == WorkloadKind.DOCKER_COMPOSE
        assert resolver.resolve(spec).argv == (
            compose, "-f", str(tmp_path / "stack.yml"), "-p", "app-stack", "up", "-d"
        )

    def test_missing_yaml_image_stays_image(self, bin_locator, tmp_path: Path) -> None:
        resolver = CommandResolver(bin_locator, cwd=tmp_path)
        spec = DockerImageWorkload(id="stack", image="missing.yml")
        assert resolver.normalize(spec) is spec


class TestDockerCompose:
    def test_no_compose_tool(self, empty_locator, tmp_path: Path) -> None:
        resolver = CommandResolver(empty_locator, cwd=tmp_path)
        spec = DockerComposeWorkload(id="stack", compose_file="docker-compose.yml")
        with pytest.raises(ToolNotFoundError, match="Docker Compose not found"):
            resolver.resolve(spec)

    def test_plugin_form(self, bin_locator, bin_dir: Path, make_script, tmp_path: Path) -> None:
        docker = str(make_script(bin_dir / "docker", "exit 0\n"))
        resolver = CommandResolver(bin_locator, cwd=tmp_path)
        spec = DockerComposeWorkload(id="stack", compose_file="/srv/stack.yml", compose_project="shop")
        assert resolver.resolve(spec).argv == (
            docker, "compose", "-f", "/srv/stack.yml", "-p", "shop", "up", "-d"
        )

    def test_prefers_standalone(self, bin_locator, bin_dir: Path, make_script, tmp_path: Path) -> None:
        make_script(bin_dir / "docker", "exit 0\n")
        compose = str(make_script(bin_dir / "docker-compose", "exit 0\n"))
        resolver = CommandResolver(bin_locator, cwd=tmp_path)
        plan = resolver.resolve(DockerComposeWorkload(id="stack", compose_file="/srv/stack.yml"))
        assert plan.argv[0] == compose
        assert plan.container is True

    def test_missing_compose_file(self, bin_locator, tmp_path: Path) -> None:
        resolver = CommandResolver(bin_locator, cwd=tmp_path)
        with pytest.raises(ConfigurationError, match="compose file not specified"):
            resolver.resolve(DockerComposeWorkload(id="stack"))


class TestConda:
    def test_conda_run(self, bin_locator, bin_dir: Path, make_script, tmp_path: Path) -> None:
        conda = make_script(bin_dir / "conda", "exit 0\n")
        resolver = CommandResolver(bin_locator, cwd=tmp_path)
        plan = resolver.resolve(CondaWorkload(id="ml", environment_name="torch", start_command="python train.py"))

        assert plan.shell_command == f'"{conda}" run -n torch python train.py'
        assert plan.env == (("PYTHONUNBUFFERED", "1"),)
        assert plan.container is False

    def test_default_command(self, bin_locator, bin_dir: Path, make_script, tmp_path: Path) -> None:
        make_script(bin_dir / "conda", "exit 0\n")
        resolver = CommandResolver(bin_locator, cwd=tmp_path)
        plan = resolver.resolve(CondaWorkload(id="ml", environment_name="base"))
        assert plan.shell_command.endswith("run -n base python app.py")

    def test_explicit_conda_passthrough(self, empty_locator, tmp_path: Path) -> None:
        resolver = CommandResolver(empty_locator, cwd=tmp_path)
        plan = resolver.resolve(CondaWorkload(id="ml", start_command="conda run -n x python a.py"))
        assert plan.shell_command == "conda run -n x python a.py"

    def test_environment_required(self, bin_locator, tmp_path: Path) -> None:
        resolver = CommandResolver(bin_locator, cwd=tmp_path)
        with pytest.raises(ConfigurationError, match="environment name"):
            resolver.resolve(CondaWorkload(id="ml", start_command="python a.py"))

    def test_conda_sh_fallback(self, empty_locator, tmp_path: Path) -> None:
        conda_sh = tmp_path / "miniconda3" / "etc" / "profile.d" / "conda.sh"
        conda_sh.parent.mkdir(parents=True)
        conda_sh.write_text("")
        resolver = CommandResolver(empty_locator, platform="linux", cwd=tmp_path)

        plan = resolver.resolve(CondaWorkload(id="ml", environment_name="torch", start_command="python a.py"))

        assert plan.argv == (
            "bash", "-lc", f'source "{conda_sh}" && conda activate torch && python a.py'
        )

    def test_raw_fallback_with_warning(self, empty_locator, tmp_path: Path) -> None:
        resolver = CommandResolver(empty_locator, platform="linux", cwd=tmp_path)
        plan = resolver.resolve(CondaWorkload(id="ml", environment_name="torch", start_command="python a.py"))
        assert plan.shell_command == "python a.py"
        assert plan.warnings == ("conda not found, fallback to base command",)


class TestLocal:
    def test_plain_command_unchanged(self, empty_locator, tmp_path: Path) -> None:
        resolver = CommandResolver(empty_locator, cwd=tmp_path)
        plan = resolver.resolve(LocalWorkload(id="s", start_command="sleep 5"))
        assert plan.shell_command == "sleep 5"
        assert plan.cwd == tmp_path

    def test_empty_command(self, empty_locator, tmp_path: Path) -> None:
        resolver = CommandResolver(empty_locator, cwd=tmp_path)
        with pytest.raises(ConfigurationError, match="start command is empty"):
            resolver.resolve(LocalWorkload(id="s", start_command="   "))

    def test_shell_script_with_args(self, empty_locator, tmp_path: Path) -> None:
        script = tmp_path / "run.sh"
        script.write_text("echo hi\n")
        resolver = CommandResolver(empty_locator, platform="linux", cwd=tmp_path)
        plan = resolver.resolve(LocalWorkload(id="s", start_command="run.sh --port 80"))
        assert plan.shell_command == f'bash "{script}" --port 80'

    def test_batch_file_on_windows(self, empty_locator, tmp_path: Path) -> None:
        script = tmp_path / "run.bat"
        script.write_text("echo hi\n")
        resolver = CommandResolver(empty_locator, platform="win32", cwd=tmp_path)
        plan = resolver.resolve(LocalWorkload(id="s", start_command="run.bat"))
        assert plan.shell_command == f'cmd /c "{script}"'

    def test_app_bundle_on_macos(self, empty_locator, tmp_path: Path) -> None:
        bundle = tmp_path / "Tool.app"
        bundle.mkdir()
        resolver = CommandResolver(empty_locator, platform="darwin", cwd=tmp_path)
        plan = resolver.resolve(LocalWorkload(id="s", start_command="Tool.app"))
        assert plan.shell_command == f'open "{bundle}"'

    def test_quoted_path_with_spaces(self, empty_locator, tmp_path: Path) -> None:
        binary = tmp_path / "my tool"
        binary.write_text("")
        resolver = CommandResolver(empty_locator, platform="linux", cwd=tmp_path)
        plan = resolver.resolve(LocalWorkload(id="s", start_command=f'"{binary}" --fast'))
        assert plan.shell_command == f'"{binary}" --fast'

    def test_working_directory_relative_and_home(self, empty_locator, tmp_path: Path) -> None:
        resolver = CommandResolver(empty_locator, cwd=tmp_path)
        assert resolver.working_directory(LocalWorkload(id="s", working_directory="sub")) == tmp_path / "sub"
        assert resolver.working_directory(LocalWorkload(id="s", working_directory="~/apps")) == tmp_path / "apps"
        assert resolver.working_directory(LocalWorkload(id="s", working_directory="/srv")) == Path("/srv")


class TestTeardown:
    def test_host_process_has_no_teardown(self, bin_locator, tmp_path: Path) -> None:
        resolver = CommandResolver(bin_locator, cwd=tmp_path)
        assert resolver.teardown(LocalWorkload(id="s", start_command="sleep 5")) is None

    def test_container_rm(self, bin_locator, bin_dir: Path, make_script, tmp_path: Path) -> None:
        docker = str(make_script(bin_dir / "docker", "exit 0\n"))
        resolver = CommandResolver(bin_locator, cwd=tmp_path)
        assert resolver.teardown(DockerImageWorkload(id="web", image="nginx")) == (
            docker, "rm", "-f", "app-web"
        )

    def test_compose_down(self, bin_locator, bin_dir: Path, make_script, tmp_path: Path) -> None:
        compose = str(make_script(bin_dir / "docker-compose", "exit 0\n"))
        resolver = CommandResolver(bin_locator, cwd=tmp_path)
        spec = DockerComposeWorkload(id="stack", compose_file="/srv/stack.yml")
        assert resolver.teardown(spec) == (compose, "-f", "/srv/stack.yml", "-p", "app-stack", "down")

    def test_missing_tool(self, empty_locator, tmp_path: Path) -> None:
        resolver = CommandResolver(empty_locator, cwd=tmp_path)
        assert resolver.teardown(DockerImageWorkload(id="web", image="nginx")) is None
