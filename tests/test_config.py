import pytest

from alpine_provisioner.config import ProvisionerConfig, load_config


def test_defaults():
    cfg = load_config(None)
    assert cfg.root == "/"
    assert cfg.concurrency == 1
    assert cfg.timeout == 300.0
    assert cfg.query_timeout == 60.0
    assert cfg.stop_on_first_failure is False
    assert cfg.flatpak_remote == "flathub"
    assert cfg.binary("apk") == "apk"
    assert cfg.log_path == "/var/log/alpine-provisioner.log"


def test_yaml_settings(tmp_path):
    p = tmp_path / "provisioner.yaml"
    p.write_text(
        "root: /mnt\n"
        "execution:\n  concurrency: 4\n  timeout: 30\n  stop_on_first_failure: true\n"
        "binaries:\n  apk: /sbin/apk.static\n",
        encoding="utf-8",
    )
    cfg = load_config(str(p))
    assert cfg.root == "/mnt"
    assert cfg.concurrency == 4
    assert cfg.timeout == 30.0
    assert cfg.stop_on_first_failure is True
    assert cfg.binary("apk") == "/sbin/apk.static"
    assert cfg.binary("ufw") == "ufw"


def test_concurrency_never_below_one():
    assert ProvisionerConfig(raw={"execution": {"concurrency": 0}}).concurrency == 1


def test_rejects_bad_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "missing.yaml"))

    j = tmp_path / "settings.json"
    j.write_text("{}", encoding="utf-8")
    with pytest.raises(ValueError, match="YAML"):
        load_config(str(j))

    lst = tmp_path / "list.yaml"
    lst.write_text("- a\n", encoding="utf-8")
    with pytest.raises(ValueError, match="mapping"):
        load_config(str(lst))
