from __future__ import annotations

from pathlib import Path

from cx_toolbelt.cli.main import app

VERSIONS_PATH = "/stacks/stk-1/configure_files/service_yml/versions.json"
VERSIONS = [
    {"uid": "v-old", "comments": "first", "created_at": "2024-01-01T00:00:00Z"},
    {"uid": "v-new", "comments": None, "created_at": "2024-02-01T00:00:00Z"},
]


def test_list_versions_newest_first(runner, cx_state, fake_api, with_stack) -> None:
    fake_api.add("GET", VERSIONS_PATH, fake_api.listing(VERSIONS))

    result = runner.invoke(app, ["stacks", "configure", "list-versions", "-f", "service.yml", "-s", "shop"], obj=cx_state)

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0].split() == ["VERSION", "CREATED", "AT", "COMMENTS"]
    assert lines[1].startswith("v-new")
    assert lines[2].startswith("v-old")
    assert lines[2].rstrip().endswith("first")


def test_unsupported_file(runner, cx_state) -> None:
    result = runner.invoke(app, ["stacks", "configure", "list-versions", "-f", "docker.yml"], obj=cx_state)
    assert result.exit_code == 2


def test_download_latest_to_stdout(runner, cx_state, fake_api, with_stack) -> None:
    fake_api.add("GET", VERSIONS_PATH, fake_api.listing(VERSIONS))
    fake_api.add(
        "GET",
        "/stacks/stk-1/configure_files/service_yml/versions/v-new.json",
        {"response": {"uid": "v-new", "body": "services: {}\n"}},
    )

    result = runner.invoke(app, ["stacks", "configure", "download", "-f", "service.yml", "-s", "shop"], obj=cx_state)

    assert result.exit_code == 0, result.output
    assert result.output == "services: {}\n"


def test_download_partial_version_to_file(runner, cx_state, fake_api, with_stack, tmp_path: Path) -> None:
    versions = [dict(VERSIONS[0], body="old body"), VERSIONS[1]]
    fake_api.add("GET", VERSIONS_PATH, fake_api.listing(versions))
    target = tmp_path / "service.yml"

    result = runner.invoke(
        app,
        ["stacks", "configure", "download", "-f", "service.yml", "-v", "v-o", "-o", str(target), "-s", "shop"],
        obj=cx_state,
    )

    assert result.exit_code == 0, result.output
    assert target.read_text() == "old body"
    assert result.output == f"Saved to {target}\n"


def test_download_without_versions(runner, cx_state, fake_api, with_stack) -> None:
    fake_api.add("GET", "/stacks/stk-1/configure_files/manifest_yml/versions.json", fake_api.listing([]))
    result = runner.invoke(app, ["stacks", "configure", "download", "-f", "manifest.yml", "-s", "shop"], obj=cx_state)
    assert result.exit_code == 1
    assert "No versions of manifest.yml found" in result.output


def test_upload(runner, cx_state, fake_api, with_stack, tmp_path: Path) -> None:
    source = tmp_path / "service.yml"
    source.write_text("services: {}\n")
    fake_api.add("POST", VERSIONS_PATH, {"response": {"uid": "v-3"}})

    result = runner.invoke(
        app,
        ["stacks", "configure", "upload", str(source), "-f", "service.yml", "-c", "bump", "-s", "shop"],
        obj=cx_state,
    )

    assert result.exit_code == 0, result.output
    assert result.output == "Uploaded service.yml as version v-3\n"
    assert fake_api.body(fake_api.calls("POST", VERSIONS_PATH)[0]) == {"body": "services: {}\n", "comments": "bump"}


def test_configuration_list(runner, cx_state, fake_api, with_stack) -> None:
    fake_api.add(
        "GET",
        "/stacks/stk-1/configurations.json",
        fake_api.listing([{"type": "nginx", "name": "Nginx"}, {"type": "haproxy", "name": None}]),
    )
    result = runner.invoke(app, ["stacks", "configuration", "list", "-s", "shop"], obj=cx_state)
    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[1].startswith("haproxy")
    assert lines[2].split()[:2] == ["nginx", "Nginx"]


def test_configuration_download(runner, cx_state, fake_api, with_stack) -> None:
    fake_api.add("GET", "/stacks/stk-1/configurations/nginx.json", {"response": {"type": "nginx", "body": "worker 1;"}})
    result = runner.invoke(app, ["stacks", "configuration", "download", "-t", "nginx", "-s", "shop"], obj=cx_state)
    assert result.exit_code == 0, result.output
    assert result.output == "worker 1;\n"


def test_configuration_upload(runner, cx_state, fake_api, with_stack, tmp_path: Path) -> None:
    source = tmp_path / "nginx.conf"
    source.write_text("worker 2;")
    fake_api.add("PUT", "/stacks/stk-1/configurations/nginx.json", {"response": {"type": "nginx"}})

    result = runner.invoke(
        app,
        ["stacks", "configuration", "upload", "-t", "nginx", "--source", str(source), "--no-apply", "-s", "shop"],
        obj=cx_state,
    )

    assert result.exit_code == 0, result.output
    assert result.output == "Configuration nginx updated\n"
    assert fake_api.body(fake_api.calls("PUT", "/stacks/stk-1/configurations/nginx.json")[0]) == {
        "body": "worker 2;",
        "apply": False,
    }


def test_configuration_apply(runner, cx_state, fake_api, with_stack) -> None:
    fake_api.add("POST", "/stacks/stk-1/configurations/nginx/apply.json", None)
    result = runner.invoke(app, ["stacks", "configuration", "apply", "-t", "nginx", "-s", "shop"], obj=cx_state)
    assert result.exit_code == 0, result.output
    assert result.output == "Configuration nginx applied\n"
