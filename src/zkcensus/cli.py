import argparse
import sys
from collections import Counter
from datetime import date, datetime, timezone
from pathlib import Path
from typing import List, Optional

import structlog

from .aggregator import CensusAggregator
from .bucketizer import Bucketizer
from .circuit_input import CircuitInputBuilder
from .config import PROVING_ROUNDS, RESULTS_PATH
from .data_models import AgeRange, CensusStatistics, Continent
from .data_logger import CensusStatisticsLogger
from .exceptions import ClassificationError, SubmissionRejectedError, ZkCensusError
from .logging_config import configure_logging
from .nullifier import InMemorySecretStore, NullifierDeriver
from .participation import CensusParticipationFlow
from .population import SyntheticPopulation
from .proof_engine import ProofEngine
from .signing import Ed25519Signer, build_census_creation_message
from .submission import SubmissionCoordinator
from .zk_prover import ZkProver

# Initialize structured logger
logger = structlog.get_logger(__name__)


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD")


class ZkCensusCLI:
    """Main command-line interface for the zkcensus system."""

    def __init__(self) -> None:
        self.parser = self._create_argument_parser()

    def _create_argument_parser(self) -> argparse.ArgumentParser:
        """Creates the argument parser for the CLI."""
        parser = argparse.ArgumentParser(
            prog="zkcensus",
            description="zkcensus - Privacy-Preserving Census via Zero-Knowledge Proofs",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )

        subparsers = parser.add_subparsers(dest="command", required=True)
        self._add_classify_command(subparsers)
        self._add_simulate_command(subparsers)

        return parser

    def _add_classify_command(self, subparsers) -> None:
        """Add the 'classify' command and its arguments."""
        classify_parser = subparsers.add_parser(
            "classify",
            help="Show the census buckets a birth date and nationality fall into.",
        )
        classify_parser.add_argument(
            "--birth-date", type=_iso_date, required=True, help="Date of birth (YYYY-MM-DD)."
        )
        classify_parser.add_argument(
            "--nationality", required=True, help="ISO-3166 alpha-3 nationality code."
        )
        classify_parser.add_argument(
            "--reference-date",
            type=_iso_date,
            default=None,
            help="Date the age is evaluated at. Default: today (UTC).",
        )
        classify_parser.add_argument(
            "--min-age", type=int, default=None, help="Census minimum age to enforce."
        )

    def _add_simulate_command(self, subparsers) -> None:
        """Add the 'simulate' command and its arguments."""
        simulate_parser = subparsers.add_parser(
            "simulate",
            help="Run a synthetic population through an in-process census.",
        )
        simulate_parser.add_argument(
            "--members", type=int, default=25, help="Number of identities. Default: 25."
        )
        simulate_parser.add_argument(
            "--min-age", type=int, default=18, help="Census minimum age. Default: 18."
        )
        simulate_parser.add_argument(
            "--disable-location",
            action="store_true",
            help="Do not collect the continent distribution.",
        )
        simulate_parser.add_argument(
            "--seed", type=int, default=None, help="Seed of the synthetic population."
        )
        simulate_parser.add_argument(
            "--proving-rounds",
            type=int,
            default=PROVING_ROUNDS,
            help=f"Proving work rounds per proof. Default: {PROVING_ROUNDS}.",
        )
        simulate_parser.add_argument(
            "--reference-date",
            type=_iso_date,
            default=None,
            help="Date ages are evaluated at. Default: today (UTC).",
        )
        simulate_parser.add_argument(
            "--output",
            type=Path,
            nargs="?",
            const=RESULTS_PATH,
            default=None,
            help=(
                "Directory for statistics snapshots; a bare flag writes to RESULTS_PATH. "
                "Nothing is written when omitted."
            ),
        )

    def _execute_classify_command(self, args: argparse.Namespace) -> int:
        reference_date = args.reference_date or datetime.now(timezone.utc).date()

        try:
            result = Bucketizer().classify(
                args.birth_date, reference_date, args.nationality, min_age=args.min_age
            )
        except ClassificationError as e:
            print(f"[NOT ELIGIBLE] {e.message} ({e.reason.value})", file=sys.stderr)
            return 1

        print(f"Age range: {result.age_range.label} (code {int(result.age_range)})")
        print(f"Continent: {result.continent.display_name} (code {int(result.continent)})")
        return 0

    def _execute_simulate_command(self, args: argparse.Namespace) -> int:
        """
        Execute the simulate command: create a census, register every
        synthetic identity through the full pipeline and print the totals.
        """
        reference_date = args.reference_date or datetime.now(timezone.utc).date()
        enable_location = not args.disable_location

        try:
            prover = ZkProver(proving_rounds=args.proving_rounds)
            aggregator = CensusAggregator(prover)

            creator = Ed25519Signer.generate()
            name = f"Simulated census ({args.members} identities)"
            description = "Synthetic population run"
            creation_message = build_census_creation_message(
                name, description, args.min_age, enable_location, True, creator.public_key
            )
            census = aggregator.create_census(
                name,
                description,
                args.min_age,
                enable_location,
                creator.public_key,
                creator.sign(creation_message),
            )

            population = SyntheticPopulation(
                args.members, reference_date, seed=args.seed
            )
            coordinator = SubmissionCoordinator(aggregator)
            outcomes: Counter = Counter()

            with ProofEngine(prover) as engine:
                for record in population:
                    # Every identity owns its device secret and wallet
                    flow = CensusParticipationFlow(
                        aggregator,
                        CircuitInputBuilder(NullifierDeriver(InMemorySecretStore())),
                        engine,
                        coordinator,
                    )
                    try:
                        flow.participate(
                            record,
                            census.census_id,
                            Ed25519Signer.generate(),
                            reference_date=reference_date,
                        )
                        outcomes["registered"] += 1
                    except ClassificationError as e:
                        outcomes[f"ineligible:{e.reason.value}"] += 1
                    except SubmissionRejectedError as e:
                        outcomes[f"rejected:{e.error_kind}"] += 1

            statistics = aggregator.get_statistics(census.census_id)
            self._display_statistics(statistics, outcomes)

            if args.output is not None:
                paths = CensusStatisticsLogger(args.output).log_statistics(
                    statistics,
                    aggregator.get_census(census.census_id),
                    extra_metadata={
                        "members": args.members,
                        "seed": args.seed,
                        "reference_date": reference_date.isoformat(),
                        "outcomes": dict(outcomes),
                    },
                )
                print(f"Results saved to: {paths['json']}")

            return 0

        except ZkCensusError as e:
            logger.error("A known application error occurred", **e.to_dict())
            print(f"\n[ERROR] {e}", file=sys.stderr)
            return 1

    def _display_statistics(self, statistics: CensusStatistics, outcomes: Counter) -> None:
        """Display the census totals and the per-identity outcomes."""
        print("\n" + "=" * 60)
        print("ZKCENSUS - SIMULATION RESULTS")
        print("=" * 60)
        print(f"Census ID: {statistics.census_id}")
        print(f"Total members: {statistics.total_members}")

        print("\nAge distribution:")
        for age_range in AgeRange:
            print(f"  {age_range.label:>6}: {statistics.age_distribution.get(age_range, 0)}")

        if statistics.continent_distribution:
            print("\nContinent distribution:")
            for continent in Continent:
                count = statistics.continent_distribution.get(continent, 0)
                print(f"  {continent.display_name:>14}: {count}")

        print("\nOutcomes:")
        for outcome, count in sorted(outcomes.items()):
            print(f"  {outcome}: {count}")
        print("=" * 60)

    def run_from_args(self, args_list: Optional[List[str]] = None) -> int:
        """Run the CLI with provided arguments."""
        try:
            args = self.parser.parse_args(args_list)
            if args.command == "classify":
                return self._execute_classify_command(args)
            elif args.command == "simulate":
                return self._execute_simulate_command(args)
            else:
                self.parser.print_help()
                return 1
        except KeyboardInterrupt:
            print("\nOperation cancelled by user.", file=sys.stderr)
            return 130


def main() -> int:
    """Main entry point for the CLI."""
    configure_logging()
    cli = ZkCensusCLI()
    return cli.run_from_args()


if __name__ == "__main__":
    sys.exit(main())
