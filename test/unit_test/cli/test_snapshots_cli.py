from __future__ import annotations

from pathlib import Path

import pytest

from cx_toolbelt.api.models import Renders, Snapshot
from cx_toolbelt.cli.main import app
from cx_toolbelt.cli.snapshots import check_renders, newest_first, yaml_comment

SNAPSHOTS = [
    {"uid": "snap-old", "triggered_by": "alice", "triggered_at": "2024-01-01T00:00:00Z", "action": "deploy"},
    {"uid": "snap-new", "triggered_by": "bob", "triggered_at": "2024-03-01T00:00:00Z", "action": "redeploy"},
    {"uid": "snap-undated"},
]

RENDER_PATH = "/stacks/stk-1/snapshots/snap-new/formations/fm-1/renders.json"

RENDERS = {
    "stencils": [
        {"filename": "namespace.yml", "content": "kind: Namespace\n", "sequence": 1},
        {"filename": "web.yml", "content": "kind: Deployment\n", "sequence": 2},
    ],
    "render_errors": [],
}


@pytest.fixture
def snapshots_api(fake_api, with_stack):
    fake_api.add("GET", "/stacks/stk-1/snapshots.json", fake_api.listing(SNAPSHOTS))
    return fake_api


def test_newest_first_puts_undated_last() -> None:
    ordered = newest_first([Snapshot.model_validate(s) for s in SNAPSHOTS])
    assert [s.uid for s in ordered] == ["snap-new", "snap-old", "snap-undated"]


def test_check_renders_reports_errors_before_warnings(capsys) -> None:
    renders = Renders.model_validate(
        {
            "render_errors": [
                {"text": "missing value", "stencil": "web.yml", "severity": "warning"},
                {"text": "bad template", "stencil": "db.yml"},
            ]
        }
    )

    assert check_renders(renders, False, False) is False
    assert capsys.readouterr().err == "Error during rendering of stencils:\nbad template in db.yml\n"
    assert check_renders(renders, True, False) is False
    assert capsys.readouterr().err == "Warning during rendering of stencils:\nmissing value in web.yml\n"
    assert check_renders(renders, True, True) is True


def test_list(runner, cx_state, snapshots_api) -> None:
    result = runner.invoke(app, ["snapshots", "list", "-s", "shop"], obj=cx_state)

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0].split() == ["UID", "LAST", "ACTION", "AT", "LAST", "ACTION", "BY", "ACTION"]
    assert [line.split()[0] for line in lines[1:]] == ["snap-new", "snap-old", "snap-undated"]


def test_list_selected_uids(runner, cx_state, snapshots_api) -> None:
    result = runner.invoke(app, ["snapshots", "list", "-s", "shop", "SNAP-OLD"], obj=cx_state)
    assert result.exit_code == 0, result.output
    assert [line.split()[0] for line in result.output.splitlines()[1:]] == ["snap-old"]


def test_render_latest_to_stdout(runner, cx_state, snapshots_api) -> None:
    snapshots_api.add("GET", RENDER_PATH, {"response": RENDERS})

    result = runner.invoke(
        app,
        ["snapshots", "render", "-s", "shop", "--snapshot", "latest", "--formation", "fm-1", "--files", "web.yml"],
        obj=cx_state,
    )

    assert result.exit_code == 0, result.output
    assert result.output == (
        "\n---\n" + yaml_comment("001_namespace.yml", "snap-new", "fm-1", 1) + "\n" + "kind: Namespace\n"
        "\n---\n" + yaml_comment("002_web.yml", "snap-new", "fm-1", 2) + "\n" + "kind: Deployment\n"
    )
    [request] = snapshots_api.calls("GET", RENDER_PATH)
    assert request.url.params.get_list("files[]") == ["web.yml"]
    assert request.url.params["use_latest"] == "true"


def test_render_to_directory(runner, cx_state, snapshots_api, tmp_path: Path) -> None:
    snapshots_api.add("GET", "/stacks/stk-1/snapshots/snap-old/formations/fm-1/renders.json", {"response": RENDERS})
    outdir = tmp_path / "out"

    result = runner.invoke(
        app,
        [
            "snapshots", "render", "-s", "shop", "--snapshot", "snap-old", "--formation", "fm-1",
            "--outdir", str(outdir), "--no-latest",
        ],
        obj=cx_state,
    )

    assert result.exit_code == 0, result.output
    assert result.output == ""
    assert sorted(p.name for p in outdir.iterdir()) == ["001_namespace.yml", "002_web.yml"]
    assert (outdir / "002_web.yml").read_text() == yaml_comment("web.yml", "snap-old", "fm-1", 2) + "kind: Deployment\n"


def test_render_errors_print_nothing(runner, cx_state, snapshots_api) -> None:
    renders = dict(RENDERS, render_errors=[{"text": "oops", "stencil": "web.yml", "severity": "error"}])
    snapshots_api.add("GET", RENDER_PATH, {"response": renders})

    result = runner.invoke(
        app, ["snapshots", "render", "-s", "shop", "--snapshot", "latest", "--formation", "fm-1"], obj=cx_state
    )

    assert result.exit_code == 0
    assert "kind:" not in result.output
    assert "oops in web.yml" in result.output


def test_render_without_snapshots(runner, cx_state, fake_api, with_stack) -> None:
    fake_api.add("GET", "/stacks/stk-1/snapshots.json", fake_api.listing([]))
    result = runner.invoke(
        app, ["snapshots", "render", "-s", "shop", "--snapshot", "latest", "--formation", "fm-1"], obj=cx_state
    )
    assert result.exit_code == 1
    assert "No snapshots found" in result.output
