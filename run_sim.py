import argparse
import logging

from core.config import ConfigError, SimulationConfig
from core.engine import PBFTSimulation
from core.logger import configure_logging


def run(sim: PBFTSimulation, rounds: int, step_ms: int, max_steps: int = 100_000) -> int:
    """Play until ``rounds`` rounds have been credited; returns steps taken."""
    target = sim.state.round + rounds
    if not sim.playing:
        sim.toggle_play()
    steps = 0
    while steps < max_steps:
        state = sim.state
        if state.round >= target:
            break
        # Manual mode parks after REPLY; act as the client.
        if (
            sim.config.manual_mode
            and state.round_settled
            and state.phase_advance_due_at is None
        ):
            sim.trigger_request()
            continue
        sim.step(step_ms)
        steps += 1
    return steps


def main():
    parser = argparse.ArgumentParser(description="Replay PBFT rounds headless")
    parser.add_argument("--rounds", type=int, default=1)
    parser.add_argument("--nodes", type=int, default=4, help="n = 3f + 1 (4, 7, 10, ...)")
    parser.add_argument("--step-ms", type=int, default=300)
    parser.add_argument("--phase-delay-ms", type=int, default=2000)
    parser.add_argument(
        "--faulty",
        type=int,
        action="append",
        default=[],
        help="Mark node id as Byzantine before starting (repeatable)",
    )
    parser.add_argument("--rotate", type=int, default=0, help="View changes before starting")
    parser.add_argument("--jitter", type=int, default=0, help="Max random delivery delay (ms)")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument(
        "--manual",
        action="store_true",
        help="Manual mode: each round waits for a client request",
    )
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)

    try:
        config = SimulationConfig.for_nodes(
            args.nodes,
            step_ms=args.step_ms,
            phase_delay_ms=args.phase_delay_ms,
            jitter_ms=args.jitter,
            seed=args.seed,
            manual_mode=args.manual,
        )
        sim = PBFTSimulation(config)
    except ConfigError as e:
        parser.error(str(e))

    for _ in range(max(0, args.rotate)):
        sim.rotate_leader()
    for node_id in args.faulty:
        if not sim.toggle_faulty(node_id):
            print(f"[PBFT] ignoring unknown node id {node_id}")

    print("=" * 50)
    print(
        f"[PBFT] n={sim.state.n} f={sim.state.f} view={sim.state.view} leader=n{sim.leader_id}"
    )
    print(f"[PBFT] faulty={sim.state.faulty_ids} rounds={args.rounds}")
    print("=" * 50)

    steps = run(sim, args.rounds, args.step_ms)

    for entry in sim.state.logs:
        print(f"{int(entry.t):>7} ms  {entry.text}")
    print("=" * 50)
    print(
        f"[PBFT] steps={steps} t={int(sim.t)} round={sim.state.round} value={sim.state.value}"
    )


if __name__ == "__main__":
    main()
