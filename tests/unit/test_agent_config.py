from pathlib import Path

import pytest

from subnet_agent.config import load_config


def test_load_config(tmp_path: Path):
    config_path = tmp_path / "agent.yaml"
    config_path.write_text(
        """
allocation:
  parent_cidr: 10.20.0.0/16
  subnet_prefix_length: 22
store:
  type: file
  path: /var/lib/subnet-operator/state.json
provider:
  type: memory
lock:
  holder_identity: agent-7
  lease_duration: 30
  retry_period: 0.25
reconcile:
  interval: 60
  workers: 8
  watch_filter: capi
"""
    )

    cfg = load_config(config_path)

    assert cfg.allocation.parent_cidr == "10.20.0.0/16"
    assert cfg.allocation.subnet_prefix_length == 22
    assert cfg.store.type == "file"
    assert cfg.store.path == Path("/var/lib/subnet-operator/state.json")
    assert cfg.provider.type == "memory"
    assert cfg.provider.path is None
    assert cfg.lock.holder_identity == "agent-7"
    assert cfg.lock.lease_duration == pytest.approx(30.0)
    assert cfg.lock.retry_period == pytest.approx(0.25)
    assert cfg.lock.acquire_timeout == pytest.approx(10.0)
    assert cfg.reconcile.interval == pytest.approx(60.0)
    assert cfg.reconcile.workers == 8
    assert cfg.reconcile.watch_filter == "capi"


def test_load_config_defaults(tmp_path: Path):
    config_path = tmp_path / "agent.yaml"
    config_path.write_text("")

    cfg = load_config(config_path)

    assert cfg.allocation.parent_cidr == "10.10.0.0/16"
    assert cfg.allocation.subnet_prefix_length == 24
    assert cfg.store.type == "memory"
    assert cfg.reconcile.interval == pytest.approx(300.0)
    assert cfg.reconcile.watch_filter is None
    assert cfg.lock.holder_identity


@pytest.mark.parametrize(
    "content",
    [
        "- not a mapping\n",
        "allocation:\n  subnet_prefix_length: 8\n",
        "allocation:\n  parent_cidr: 10.10.0.1/16\n",
        "store:\n  type: etcd\n",
        "store:\n  type: file\n",
        "reconcile:\n  workers: 0\n",
        "lock: []\n",
    ],
)
def test_load_config_rejects_invalid(tmp_path: Path, content: str):
    config_path = tmp_path / "agent.yaml"
    config_path.write_text(content)

    with pytest.raises(ValueError):
        load_config(config_path)
