from __future__ import annotations

import base64
from pathlib import Path
from typing import List, Optional

import pytest
from watchdog.events import DirModifiedEvent, FileModifiedEvent

from cx_toolbelt.cli.formations import NO_FORMATION_MESSAGE, _RenderOnChange
from cx_toolbelt.cli.main import app

REPO = "git@github.com:acme/stencils.git"

FORMATION = {
    "uid": "fm-1",
    "name": "prod",
    "tags": ["a", "b"],
    "base_templates": [{"uid": "btr-1", "name": "main", "git_repo": REPO, "git_branch": "master"}],
    "stencils": [
        {"uid": "st-2", "filename": "web.yml", "body": "kind: Deployment\n", "sequence": 2, "gitfile_path": "k8s/web.yml"},
        {"uid": "st-1", "filename": "namespace.yml", "body": "kind: Namespace\n", "sequence": 1},
    ],
    "created_at": "2024-01-01T00:00:00Z",
}
OTHER = {"uid": "fm-0", "name": "canary", "stencils": None}

FORMATIONS_PATH = "/stacks/stk-1/formations.json"
RENDER_PATH = "/stacks/stk-1/snapshots/snap-1/formations/fm-1/stencils/st-2/render.json"


@pytest.fixture
def formations_api(fake_api, with_stack):
    fake_api.add("GET", FORMATIONS_PATH, fake_api.listing([FORMATION, OTHER]))
    fake_api.add("GET", "/stacks/stk-1/snapshots.json", fake_api.listing([{"uid": "snap-1", "triggered_at": "2024-01-01T00:00:00Z"}]))
    return fake_api


def _invoke(runner, cx_state, *args: str, **kwargs):
    return runner.invoke(app, ["formations", *args, "-s", "shop"], obj=cx_state, **kwargs)


def test_list(runner, cx_state, formations_api) -> None:
    result = _invoke(runner, cx_state, "list")

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0].split()[:3] == ["UID", "NAME", "TAGS"]
    assert lines[1].split()[:2] == ["fm-0", "canary"]
    assert lines[2].split()[:6] == ["fm-1", "prod", "a,b", "2", "0", "0"]
    assert "main" in lines[2]
    [request] = formations_api.calls("GET", FORMATIONS_PATH)
    assert request.url.params["include_stencils"] == "false"


def test_list_named(runner, cx_state, formations_api) -> None:
    result = _invoke(runner, cx_state, "list", "PROD")
    assert result.exit_code == 0, result.output
    assert len(result.output.splitlines()) == 2


def test_create(runner, cx_state, fake_api, with_stack) -> None:
    fake_api.add("POST", FORMATIONS_PATH, {"response": {"uid": "fm-9", "name": "new"}})

    result = _invoke(
        runner, cx_state, "create", "--name", "new", "--template-repo", REPO, "--template-branch", "master", "--tags", "x,y"
    )

    assert result.exit_code == 0, result.output
    assert result.output == "Formation created\n"
    assert fake_api.body(fake_api.calls("POST", FORMATIONS_PATH)[0]) == {
        "name": "new",
        "template_base": REPO,
        "template_branch": "master",
        "tags": ["x", "y"],
    }


def test_fetch(runner, cx_state, formations_api, tmp_path: Path) -> None:
    outdir = tmp_path / "out"
    (outdir / "stencils").mkdir(parents=True)
    (outdir / "stencils" / "web.yml").write_text("local edit")

    result = _invoke(runner, cx_state, "fetch", "-f", "prod", "--outdir", str(outdir), input="n\n")

    assert result.exit_code == 0, result.output
    assert "web.yml already exists. Overwrite?" in result.output
    assert result.output.endswith(f"\nFormation is available at {outdir / 'stencils'}\n")
    assert (outdir / "stencils" / "web.yml").read_text() == "local edit"
    assert (outdir / "stencils" / "namespace.yml").read_text() == "kind: Namespace\n"


def test_fetch_overwrite(runner, cx_state, formations_api, tmp_path: Path) -> None:
    outdir = tmp_path / "out"
    (outdir / "stencils").mkdir(parents=True)
    (outdir / "stencils" / "web.yml").write_text("local edit")

    result = _invoke(runner, cx_state, "fetch", "-f", "prod", "--outdir", str(outdir), "--overwrite")

    assert result.exit_code == 0, result.output
    assert (outdir / "stencils" / "web.yml").read_text() == "kind: Deployment\n"


def test_fetch_unknown_formation(runner, cx_state, formations_api, tmp_path: Path) -> None:
    result = _invoke(runner, cx_state, "fetch", "-f", "nope", "--outdir", str(tmp_path))
    assert result.exit_code == 1
    assert 'Formation with name "nope" could not be found' in result.output


def test_fetch_needs_formation(runner, cx_state, tmp_path: Path) -> None:
    result = _invoke(runner, cx_state, "fetch", "--outdir", str(tmp_path))
    assert result.exit_code == 1
    assert NO_FORMATION_MESSAGE in result.output


def test_commit_single_stencil(runner, cx_state, formations_api, tmp_path: Path) -> None:
    stencil = tmp_path / "web.yml"
    stencil.write_text("kind: Deployment\nreplicas: 2\n")
    put_path = "/stacks/stk-1/formations/fm-1/stencils/st-2.json"
    formations_api.add("PUT", put_path, {"response": {"uid": "st-2", "filename": "web.yml"}})

    result = _invoke(runner, cx_state, "commit", "-f", "prod", "--stencil", str(stencil), "--message", "scale up")

    assert result.exit_code == 0, result.output
    assert result.output.splitlines() == ["Saved web.yml", "Done"]
    assert formations_api.body(formations_api.calls("PUT", put_path)[0]) == {
        "message": "scale up",
        "body": "kind: Deployment\nreplicas: 2\n",
    }


def test_commit_directory_with_unknown_file(runner, cx_state, formations_api, tmp_path: Path) -> None:
    (tmp_path / "stencils").mkdir()
    (tmp_path / "stencils" / "zzz.yml").write_text("x")

    result = _invoke(
        runner, cx_state, "commit", "-f", "prod", "--dir", str(tmp_path / "stencils"), "--message", "m"
    )

    assert result.exit_code == 1
    assert "No stencil named zzz.yml found on the formation" in result.output


@pytest.mark.parametrize(
    "args, message",
    [
        (["--message", "m"], "Either --dir or --stencil should be provided"),
        (["--dir", ".", "--stencil", "web.yml", "--message", "m"], "Cannot use both --dir and --stencil at the same time"),
        (["--stencil", "web.yml"], "No message provided"),
        (["--stencil", "missing.yml", "--message", "m"], "Cannot find missing.yml to save"),
    ],
)
def test_commit_errors(runner, cx_state, formations_api, args, message) -> None:
    result = _invoke(runner, cx_state, "commit", "-f", "prod", *args)
    assert result.exit_code == 1
    assert message in result.output


def _workflow_response(document: str) -> dict:
    return {"response": {"workflow": base64.b64encode(document.encode()).decode()}}


def test_deploy_runs_workflow(runner, cx_state, formations_api) -> None:
    workflow_path = "/stacks/stk-1/formations/fm-1/workflows/default.json"
    formations_api.add("GET", workflow_path, _workflow_response("steps:\n  - {name: hello, command: 'echo hi'}\n"))

    result = _invoke(runner, cx_state, "deploy", "-f", "prod", "--no-use-latest")

    assert result.exit_code == 0, result.output
    assert "Running step hello" in result.output
    assert "Workflow finished: 1 succeeded, 0 failed" in result.output
    [request] = formations_api.calls("GET", workflow_path)
    assert request.url.params["snapshot_uid"] == "latest"
    assert request.url.params["use_latest"] == "false"


def test_deploy_failing_step(runner, cx_state, formations_api) -> None:
    formations_api.add(
        "GET",
        "/stacks/stk-1/formations/fm-1/workflows/default.json",
        _workflow_response("steps:\n  - {name: broken, command: 'exit 4'}\n"),
    )

    result = _invoke(runner, cx_state, "deploy", "-f", "prod")

    assert result.exit_code == 1
    assert "1 step(s) failed" in result.output
    assert "broken: exit status 4" in result.output


def test_deploy_undecodable_workflow(runner, cx_state, formations_api) -> None:
    formations_api.add("GET", "/stacks/stk-1/formations/fm-1/workflows/default.json", {"response": {"workflow": "abc"}})

    result = _invoke(runner, cx_state, "deploy", "-f", "prod")

    assert result.exit_code == 1
    assert "unable to decode the formation workflow" in result.output


def test_deploy_bad_log_level(runner, cx_state) -> None:
    result = _invoke(runner, cx_state, "deploy", "-f", "prod", "--log-level", "trace")
    assert result.exit_code == 2


def test_stencils_list_in_sequence_order(runner, cx_state, formations_api) -> None:
    result = _invoke(runner, cx_state, "stencils", "list", "--formation", "prod")

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0].split() == ["UID", "FILENAME", "TAGS", "CREATED", "AT", "LAST", "UPDATED"]
    assert [line.split()[0] for line in lines[1:]] == ["st-1", "st-2"]


def test_stencils_list_wide(runner, cx_state, formations_api) -> None:
    result = _invoke(runner, cx_state, "stencils", "list", "--formation", "prod", "-o", "wide")
    assert result.exit_code == 0, result.output
    assert "GITFILE" in result.output
    assert "k8s/web.yml" in result.output


def test_stencils_list_unknown_formation(runner, cx_state, formations_api) -> None:
    result = _invoke(runner, cx_state, "stencils", "list", "--formation", "nope")
    assert result.exit_code == 1
    assert "No formation named 'nope' found" in result.output


def test_stencils_show(runner, cx_state, formations_api) -> None:
    result = _invoke(runner, cx_state, "stencils", "show", "--formation", "prod", "--stencil", "web.yml")
    assert result.exit_code == 0, result.output
    assert result.output == "kind: Deployment\n"


@pytest.mark.parametrize(
    "args, message",
    [
        ([], "No stencil name provided. Please use --stencil to specify a stencil"),
        (["--stencil", "db.yml"], "No stencil named 'db.yml' found"),
    ],
)
def test_stencils_show_errors(runner, cx_state, formations_api, args, message) -> None:
    result = _invoke(runner, cx_state, "stencils", "show", "--formation", "prod", *args)
    assert result.exit_code == 1
    assert message in result.output


def test_stencils_render_to_stdout(runner, cx_state, formations_api, tmp_path: Path) -> None:
    local = tmp_path / "web.yml"
    local.write_text("kind: Deployment\nreplicas: 3\n")
    formations_api.add(
        "POST",
        RENDER_PATH,
        {"response": {"stencils": [{"filename": "web.yml", "content": "replicas: 3\n"}]}},
    )

    result = _invoke(runner, cx_state, "stencils", "render", "--formation", "prod", "--stencil-file", str(local))

    assert result.exit_code == 0, result.output
    assert result.output == "replicas: 3\n---\n"
    assert formations_api.body(formations_api.calls("POST", RENDER_PATH)[0]) == {"body": "kind: Deployment\nreplicas: 3\n"}


def test_stencils_render_folder_to_directory(runner, cx_state, formations_api, tmp_path: Path) -> None:
    folder = tmp_path / "stencils"
    folder.mkdir()
    (folder / "web.yml").write_text("kind: Deployment\n")
    formations_api.add("POST", RENDER_PATH, {"response": {"stencils": [{"filename": "web.yml", "content": "ok\n"}]}})
    out = tmp_path / "rendered"

    result = _invoke(
        runner,
        cx_state,
        "stencils", "render", "--formation", "prod", "--stencil-folder", str(folder),
        "--output", str(out), "--snapshot", "snap-1",
    )

    assert result.exit_code == 0, result.output
    assert result.output == f"Rendering web.yml to {out / 'web.yml'}\n"
    assert (out / "web.yml").read_text() == "ok\n"
    assert formations_api.calls("GET", "/stacks/stk-1/snapshots.json") == []


def test_stencils_render_reports_problems(runner, cx_state, formations_api, tmp_path: Path) -> None:
    local = tmp_path / "web.yml"
    local.write_text("x")
    formations_api.add(
        "POST", RENDER_PATH, {"response": {"render_errors": [{"text": "bad indent", "stencil": "web.yml"}]}}
    )

    result = _invoke(runner, cx_state, "stencils", "render", "--formation", "prod", "--stencil-file", str(local))

    assert result.exit_code == 0
    assert "Error during rendering of stencils:" in result.output
    assert "bad indent in web.yml" in result.output


@pytest.mark.parametrize(
    "args, message",
    [
        ([], "No stencil file or folder provided"),
        (["--stencil-file", "a.yml", "--stencil-folder", "."], "Both --stencil-file and --stencil-folder provided"),
        (["--stencil-file", "a.yml", "--watch"], "Cannot use --watch without --output"),
        (["--stencil-file", "a.yml"], "Cannot find a.yml"),
        (["--stencil-file", "{tmp}/db.yml"], "No stencil named 'db.yml' found"),
    ],
)
def test_stencils_render_errors(runner, cx_state, formations_api, tmp_path: Path, args, message) -> None:
    (tmp_path / "db.yml").write_text("x")
    args = [a.format(tmp=tmp_path) for a in args]
    result = _invoke(runner, cx_state, "stencils", "render", "--formation", "prod", *args)
    assert result.exit_code == 1
    assert message in result.output


class _RecordingRenderer:
    def __init__(self) -> None:
        self.rendered: List[tuple] = []
        self.echoed: List[str] = []

    def echo(self, message: str) -> None:
        self.echoed.append(message)

    def render(self, stencil_file: Path, output: Optional[Path]) -> None:
        self.rendered.append((stencil_file, output))


def test_render_on_change_only_watched_files(tmp_path: Path) -> None:
    watched = (tmp_path / "web.yml").resolve()
    renderer = _RecordingRenderer()
    handler = _RenderOnChange(renderer, {watched}, tmp_path / "out")

    handler.on_modified(FileModifiedEvent(str(tmp_path / "other.yml")))
    handler.on_modified(DirModifiedEvent(str(tmp_path)))
    handler.on_modified(FileModifiedEvent(str(tmp_path / "web.yml")))

    assert renderer.rendered == [(watched, tmp_path / "out" / "web.yml")]
    assert renderer.echoed == [f"Rendering web.yml to {tmp_path / 'out' / 'web.yml'}"]


def test_stencils_add(runner, cx_state, formations_api, tmp_path: Path) -> None:
    local = tmp_path / "worker.yml"
    local.write_text("kind: Deployment\n")
    stencils_path = "/stacks/stk-1/formations/fm-1/stencils.json"
    formations_api.add("POST", stencils_path, {"response": [{"uid": "st-9", "filename": "worker.yml"}]})

    result = _invoke(
        runner,
        cx_state,
        "stencils", "add", "--formation", "prod", "--stencil", str(local), "--base-template", "btr-1",
        "--service", "worker", "--sequence", "3", "--tags", "jobs", "--message", "add worker",
    )

    assert result.exit_code == 0, result.output
    assert result.output == "Stencil was added to formation\n"
    body = formations_api.body(formations_api.calls("POST", stencils_path)[0])
    assert body["btr_uuid"] == "btr-1"
    assert body["message"] == "add worker"
    assert body["stencils"] == [
        {
            "filename": "worker.yml",
            "template_filename": "",
            "context_id": "worker",
            "tags": ["jobs"],
            "body": "kind: Deployment\n",
            "sequence": 3,
            "inline": False,
        }
    ]


def test_stencils_add_duplicate(runner, cx_state, formations_api, tmp_path: Path) -> None:
    local = tmp_path / "web.yml"
    local.write_text("x")
    result = _invoke(
        runner, cx_state, "stencils", "add", "--formation", "prod", "--stencil", str(local), "--base-template", "btr-1"
    )
    assert result.exit_code == 1
    assert "Another stencil with the same name is found" in result.output
