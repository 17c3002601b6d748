from __future__ import annotations

from pathlib import Path

import pytest

from cx_toolbelt.cli.main import app

SSL_PATH = "/stacks/stk-1/ssl_certificates.json"


@pytest.fixture
def no_certificates(fake_api, with_stack):
    fake_api.add("GET", SSL_PATH, fake_api.listing([]))
    return fake_api


def test_add_lets_encrypt(runner, cx_state, no_certificates) -> None:
    no_certificates.add("POST", SSL_PATH, {"response": {"uuid": "c1", "type": "lets_encrypt"}})

    result = runner.invoke(
        app,
        ["stacks", "ssl", "add", "-s", "shop", "--type", "lets_encrypt", "--domains", "a.example.com,b.example.com"],
        obj=cx_state,
    )

    assert result.exit_code == 0, result.output
    assert result.output == "Creating SSL certificate...\n"
    assert no_certificates.body(no_certificates.calls("POST", SSL_PATH)[0]) == {
        "type": "lets_encrypt",
        "server_names": "a.example.com,b.example.com",
    }


def test_lets_encrypt_needs_domains(runner, cx_state, no_certificates) -> None:
    result = runner.invoke(app, ["stacks", "ssl", "add", "-s", "shop", "--type", "lets_encrypt"], obj=cx_state)
    assert result.exit_code == 1
    assert "No domains names specified" in result.output


def test_add_manual(runner, cx_state, no_certificates, tmp_path: Path) -> None:
    for name in ("cert.pem", "key.pem", "chain.pem"):
        (tmp_path / name).write_text(f"-----{name}-----")
    no_certificates.add("POST", SSL_PATH, {"response": {"uuid": "c1", "type": "manual"}})

    result = runner.invoke(
        app,
        [
            "stacks", "ssl", "add", "-s", "shop", "--type", "manual",
            "--cert", str(tmp_path / "cert.pem"),
            "--key", str(tmp_path / "key.pem"),
            "--intermediate", str(tmp_path / "chain.pem"),
        ],
        obj=cx_state,
    )

    assert result.exit_code == 0, result.output
    assert no_certificates.body(no_certificates.calls("POST", SSL_PATH)[0]) == {
        "type": "manual",
        "server_names": "",
        "certificate": "-----cert.pem-----",
        "key": "-----key.pem-----",
        "intermediate_certificate": "-----chain.pem-----",
    }


@pytest.mark.parametrize(
    "args, message",
    [
        (["--type", "manual"], "No certificate file specified"),
        (["--type", "manual", "--cert", "{cert}"], "No key file specified"),
        ([], "Please ensure that you specify the SSL certificate type"),
        (["--type", "self_signed"], "Please ensure that you specify the SSL certificate type"),
    ],
)
def test_add_manual_errors(runner, cx_state, no_certificates, tmp_path: Path, args, message) -> None:
    cert = tmp_path / "cert.pem"
    cert.write_text("cert")
    args = [a.format(cert=cert) for a in args]
    result = runner.invoke(app, ["stacks", "ssl", "add", "-s", "shop", *args], obj=cx_state)
    assert result.exit_code == 1
    assert message in result.output


def test_existing_certificate_needs_overwrite(runner, cx_state, fake_api, with_stack) -> None:
    fake_api.add("GET", SSL_PATH, fake_api.listing([{"uuid": "old", "type": "lets_encrypt"}]))
    result = runner.invoke(
        app, ["stacks", "ssl", "add", "-s", "shop", "--type", "lets_encrypt", "--domains", "a.com"], obj=cx_state
    )
    assert result.exit_code == 1
    assert "Please use the --overwrite flag" in result.output


def test_overwrite_updates_existing(runner, cx_state, fake_api, with_stack) -> None:
    fake_api.add("GET", SSL_PATH, fake_api.listing([{"uuid": "old", "type": "lets_encrypt"}]))
    fake_api.add("PUT", "/stacks/stk-1/ssl_certificates/old.json", {"response": {"uuid": "old", "type": "lets_encrypt"}})

    result = runner.invoke(
        app,
        ["stacks", "ssl", "add", "-s", "shop", "--type", "lets_encrypt", "--domains", "a.com", "--overwrite"],
        obj=cx_state,
    )

    assert result.exit_code == 0, result.output
    assert result.output == "Updating SSL certificate...\n"
    assert fake_api.calls("POST", SSL_PATH) == []
