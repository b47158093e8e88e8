import json

import pytest
import yaml

from config.config import COORDINATOR_KEY_ENV, ProtocolConfig, SystemConfig, load_config, save_config
from ledger.processor import TallyResult
from utils.utils import PerformanceMonitor, create_performance_report, format_duration, save_results
from zk.zk_proofs import (
    Groth16Proof,
    VerificationKeyError,
    VerifyingKey,
    compute_public_input_hash,
    tally_public_input_hash,
)

from conftest import fake_vk_json


class TestConfig:

    @pytest.fixture(autouse=True)
    def workdir(self, tmp_path, monkeypatch):
        # default log and results directories are created relative to cwd
        monkeypatch.chdir(tmp_path)

    def test_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")
        assert config.protocol.state_tree_depth == 2
        assert config.prover.process_circuit == "MessageProcessor"
        assert config.log_level == "INFO"

    def test_yaml_round_trip_omits_private_key(self, tmp_path, monkeypatch):
        monkeypatch.delenv(COORDINATOR_KEY_ENV, raising=False)
        config = SystemConfig(
            protocol=ProtocolConfig(state_tree_depth=3, quadratic=False),
            log_dir=tmp_path / "logs",
            results_dir=tmp_path / "results",
        )
        config.coordinator.private_key = "macisk." + "01" * 32
        path = tmp_path / "config.yaml"
        save_config(config, path)

        data = yaml.safe_load(path.read_text())
        assert 'private_key' not in data['coordinator']

        loaded = load_config(path)
        assert loaded.protocol.state_tree_depth == 3
        assert loaded.protocol.quadratic is False
        assert loaded.coordinator.private_key is None

    def test_private_key_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv(COORDINATOR_KEY_ENV, "macisk.abc")
        config = load_config(tmp_path / "absent.yaml")
        assert config.coordinator.private_key == "macisk.abc"

    def test_invalid_protocol_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({'protocol': {'message_batch_depth': 5, 'message_tree_depth': 2}}))
        assert load_config(path).protocol.message_batch_depth == 1

    def test_sub_depth_validation(self):
        with pytest.raises(ValueError):
            ProtocolConfig(state_tree_depth=1, state_tree_sub_depth=2)


class TestUtils:

    def test_format_duration(self):
        assert format_duration(0.5) == "500.0ms"
        assert format_duration(75) == "1m 15.0s"

    def test_monitor_summary_report_and_saved_metrics(self, tmp_path):
        monitor = PerformanceMonitor()
        for _ in range(3):
            with monitor.start_operation("replay_batch"):
                pass
        summary = monitor.get_summary()
        assert summary['operations']['replay_batch']['count'] == 3
        assert "REPLAY_BATCH" in create_performance_report(monitor)

        path = tmp_path / "metrics" / "performance.json"
        monitor.save_metrics(path)
        saved = json.loads(path.read_text())
        assert len(saved['metrics']) == 3
        assert saved['summary']['operations']['replay_batch']['count'] == 3
        assert 'system_info' in saved

    def test_save_results_keeps_field_elements_exact(self, tmp_path):
        big = 2 ** 250 + 1
        result = TallyResult((1, 2, 0), 2, 1, 0, 3, big, 3, big, True)
        path = tmp_path / "results.json"
        save_results({'polls': {0: result}, 'message_statuses': {'applied': 3}}, path)

        data = json.loads(path.read_text())['data']
        assert data['polls']['0']['results_root'] == str(big)
        assert data['polls']['0']['for'] == 2
        summary = (tmp_path / "results_summary.txt").read_text()
        assert "For: 2" in summary
        assert "applied: 3" in summary


class TestProofBoundary:

    def test_verifying_key_shape(self):
        vk = VerifyingKey.from_json(fake_vk_json())
        assert vk.n_public == 1
        assert VerifyingKey.from_json(vk.to_json()).fingerprint() == vk.fingerprint()

        broken = fake_vk_json()
        broken['IC'] = broken['IC'][:1]
        with pytest.raises(VerificationKeyError):
            VerifyingKey.from_json(broken)

    def test_missing_key_file(self, tmp_path):
        with pytest.raises(VerificationKeyError):
            VerifyingKey.load(tmp_path / "vkey.json")

    def test_snarkjs_proof_shape(self):
        raw = {
            'pi_a': ["1", "2", "1"],
            'pi_b': [["3", "4"], ["5", "6"], ["1", "0"]],
            'pi_c': ["7", "8", "1"],
            'protocol': 'groth16',
            'curve': 'bn128',
        }
        proof = Groth16Proof.from_snarkjs(raw)
        assert proof.pi_b == [[3, 4], [5, 6]]
        assert proof.to_snarkjs() == raw
        assert proof.ledger_args()['pB'] == [[4, 3], [6, 5]]

    def test_public_input_hash_is_a_field_element(self):
        value = compute_public_input_hash([2 ** 255, 1])
        assert value < 2 ** 253
        assert tally_public_input_hash(1, 2, 3, 0, 4) != tally_public_input_hash(1, 2, 3, 5, 4)
