import argparse
import asyncio
import logging
import sys
import time
from collections import Counter
from pathlib import Path
from typing import Any, Dict

from config.config import SystemConfig, load_config
from coordinator.descriptor import load_and_check
from coordinator.errors import CoordinatorError
from ledger.errors import LedgerError
from primitives.context import CryptoContext
from primitives.keys import Keypair
from primitives.structures import AGAINST, FOR
from utils.utils import (
    PerformanceMonitor,
    create_performance_report,
    save_results,
    setup_logging,
    validate_environment,
)
from voting_round import VotingRound
from zk.zk_proofs import (
    CircuitConfig,
    ProofType,
    SnarkjsProver,
    SnarkjsVerifier,
    VerifyingKey,
    ZKError,
)

logger = logging.getLogger(__name__)


def load_coordinator_keypair(ctx: CryptoContext, config: SystemConfig) -> Keypair:
    """Coordinator key from config or environment; a fresh key otherwise"""
    serialized = config.coordinator.private_key
    if serialized:
        return Keypair.deserialize(ctx, serialized)
    logger.warning("No coordinator private key configured, generating an ephemeral one")
    return Keypair.generate(ctx)


def build_prover(config: SystemConfig) -> SnarkjsProver:
    prover_config = config.prover
    circuits = {
        ProofType.PROCESS_MESSAGES: CircuitConfig(prover_config.process_circuit, prover_config.build_dir),
        ProofType.TALLY_VOTES: CircuitConfig(prover_config.tally_circuit, prover_config.build_dir),
    }
    return SnarkjsProver(
        circuits,
        node_bin=prover_config.node_bin,
        snarkjs_bin=prover_config.snarkjs_bin,
        proof_timeout=prover_config.proof_timeout,
        max_concurrent=prover_config.parallel_workers,
    )


def run_keygen() -> bool:
    ctx = CryptoContext()
    keypair = Keypair.generate(ctx)
    print(f"Private key: {keypair.serialize_private_key()}")
    print(f"Public key:  {keypair.public_key.serialize()}")
    return True


def run_check_descriptor(config: SystemConfig) -> bool:
    ctx = CryptoContext()
    if not config.coordinator.private_key:
        print("No coordinator private key configured")
        return False
    coordinator = load_coordinator_keypair(ctx, config)

    try:
        check = load_and_check(config.coordinator.descriptor_path, coordinator,
                               strict=config.coordinator.strict_descriptor)
    except (CoordinatorError, ValueError, OSError) as e:
        print(f"Descriptor check failed: {e}")
        return False

    if check is None:
        print(f"Deployment descriptor not found: {config.coordinator.descriptor_path}")
        return False

    print(f"Declared coordinator key: {check.declared.serialize()}")
    print(f"Derived coordinator key:  {check.derived.serialize()}")
    print("Descriptor matches" if check.matches else "Descriptor is STALE")
    return check.matches


async def run_demo(config: SystemConfig) -> bool:
    print("=" * 80)
    print("PRIVATE VOTING ROUND - DEMONSTRATION")
    print("   Encrypted votes, batched replay, Groth16-verified tally")
    print("=" * 80)

    prover = build_prover(config)
    missing = validate_environment([config.prover.node_bin, config.prover.snarkjs_bin])
    for circuit in prover.circuits.values():
        missing += [f"Circuit artifact not found: {p}" for p in circuit.missing_files()]
    if missing:
        print("\nCannot run the demo, missing prerequisites:")
        for item in missing:
            print(f"  - {item}")
        return False

    ctx = CryptoContext()
    monitor = PerformanceMonitor()
    try:
        process_vk = VerifyingKey.load(prover.circuits[ProofType.PROCESS_MESSAGES].vkey_file)
        tally_vk = VerifyingKey.load(prover.circuits[ProofType.TALLY_VOTES].vkey_file)
    except ZKError as e:
        print(f"\nCannot load verifying keys: {e}")
        return False

    protocol = config.protocol
    round_ = VotingRound(
        ctx, protocol, prover, SnarkjsVerifier(config.prover.snarkjs_bin),
        process_vk, tally_vk,
        coordinator_keypair=load_coordinator_keypair(ctx, config),
        monitor=monitor,
    )

    print(f"\nProtocol parameters:")
    print(f"   • State tree depth: {protocol.state_tree_depth}")
    print(f"   • Message tree depth: {protocol.message_tree_depth} "
          f"(batches of {5 ** protocol.message_batch_depth})")
    print(f"   • Voice credits per voter: {protocol.initial_voice_credits} "
          f"({'quadratic' if protocol.quadratic else 'linear'} cost)")

    start_time = time.time()
    try:
        with monitor.start_operation("sign_up"):
            alice = round_.register_voter("alice")
            bob = round_.register_voter("bob")
            carol = round_.register_voter("carol")
        poll_id = round_.open_poll("Adopt the proposal?")

        with monitor.start_operation("publish_messages"):
            round_.cast_vote(alice, poll_id, FOR)
            round_.cast_vote(bob, poll_id, AGAINST)
            round_.change_key(carol, poll_id)
            round_.cast_vote(carol, poll_id, FOR)

        round_.close(poll_id)
        print(f"\nVoting closed with {len(round_.voters)} voters; processing poll {poll_id}...")
        coordinator = round_.coordinator
        await coordinator.watch(config.coordinator.poll_interval, iterations=1)
    except (LedgerError, CoordinatorError, ZKError) as e:
        print(f"\nDemo failed: {e}")
        logger.exception("Demo failed")
        return False

    if poll_id in coordinator.failures:
        print(f"\nDemo failed: {coordinator.failures[poll_id]}")
        return False
    result = round_.registry.get_poll(poll_id).tally.results

    elapsed = time.time() - start_time
    print("\n" + "=" * 40)
    print("POLL RESULTS")
    print("=" * 40)
    print(f"  For:     {result.for_votes}")
    print(f"  Against: {result.against_votes}")
    print(f"  Abstain: {result.abstain_votes}")
    print(f"  Voters:  {result.total_voters}")
    print(f"  Verified on ledger: {result.verified}")

    results: Dict[str, Any] = {
        'polls': {poll_id: result},
        'message_statuses': dict(Counter(
            status.value
            for statuses in round_.coordinator.message_statuses.values()
            for status in statuses.values()
        )),
        'performance_metrics': {
            'total_time': elapsed,
            'stages': monitor.get_summary(),
        },
    }
    report_path = config.results_dir / "demo_results.json"
    save_results(results, report_path)

    perf_report = create_performance_report(monitor)
    perf_path = config.results_dir / "performance_report.txt"
    with open(perf_path, "w") as f:
        f.write(perf_report)
    monitor.save_metrics(config.results_dir / "performance_metrics.json")

    print(f"\nFull results saved to: {report_path}")
    print(f"Performance report: {perf_path}")
    return result.verified


def main():
    parser = argparse.ArgumentParser(
        description='Private voting coordinator')
    parser.add_argument('--config', type=str,
                        default='config.yaml', help='Config file path')
    parser.add_argument(
        '--mode', choices=['keygen', 'check-descriptor', 'demo'], default='demo')

    args = parser.parse_args()

    config = load_config(Path(args.config))
    setup_logging(config.log_level)

    if args.mode == 'keygen':
        success = run_keygen()
    elif args.mode == 'check-descriptor':
        success = run_check_descriptor(config)
    else:
        success = asyncio.run(run_demo(config))
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
