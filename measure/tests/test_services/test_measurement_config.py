"""Tests for loading the measurements section of a config file."""

import pytest

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from services.measurement_config import ConfigError, load_measurements_config

NESTED_YAML = """
global:
  measurements:
    - name: pprof
      pprofInterval: 2m
      pprofDirectory: /tmp/pprof-data
      pprofTargets:
        - name: kube-apiserver-heap
          namespace: openshift-kube-apiserver
          labelSelector: {app: openshift-kube-apiserver}
          bearerToken: token
          url: https://localhost:6443/debug/pprof/heap
    - name: podLatency
      thresholds: []
jobs: []
"""


class TestLoadMeasurementsConfig:
    def test_nested_global_layout(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text(NESTED_YAML)

        config = load_measurements_config(path)

        pprof, latency = config.measurements
        assert pprof.name == "pprof"
        assert pprof.pprof_interval.total_seconds() == 120
        assert pprof.pprof_targets[0].bearer_token == "token"
        assert latency.name == "podLatency"
        assert latency.model_extra == {"thresholds": []}

    def test_flat_json_layout(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text('{"measurements": [{"name": "pprof"}]}')

        config = load_measurements_config(path)

        assert [m.name for m in config.measurements] == ["pprof"]

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert load_measurements_config(path).measurements == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="cannot read"):
            load_measurements_config(tmp_path / "nope.yml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yml"
        path.write_text("measurements: [unclosed")
        with pytest.raises(ConfigError, match="invalid YAML"):
            load_measurements_config(path)

    def test_invalid_measurement(self, tmp_path):
        path = tmp_path / "bad.yml"
        path.write_text("measurements:\n  - pprofInterval: 10s\n")
        with pytest.raises(ConfigError, match="invalid measurements"):
            load_measurements_config(path)

    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "list.yml"
        path.write_text("- pprof\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_measurements_config(path)
