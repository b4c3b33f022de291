"""Championship CLI entry point."""

import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

env_file = Path(__file__).parent.parent / ".env"
load_dotenv(env_file)

from championship import __version__
from championship.config import Settings, get_settings
from championship.errors import EscrowError
from championship.escrow import ChampionshipEscrow, hash_challenge_text
from championship.events import JsonlEventSink
from championship.models import Challenge, ChallengeMetadata
from championship.observability import initialize_logfire, setup_logging
from championship.ports import SystemClock
from championship.storage import SqlChallengeStore, SqlCustody

logger = logging.getLogger(__name__)


def _init_logfire(app=None, engine=None) -> None:
    """Initialize Logfire if available, without failing commands."""
    try:
        initialize_logfire(get_settings(), app=app, engine=engine)
    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")


def _build_escrow(settings: Settings) -> ChampionshipEscrow:
    """Wire the escrow to the SQL store, its custody tables, and the JSONL event ledger."""
    store = SqlChallengeStore.from_url(settings.get_database_url())
    custody = SqlCustody(store)
    return ChampionshipEscrow(
        store=store,
        custody=custody,
        clock=SystemClock(),
        settings=settings,
        event_sink=JsonlEventSink(settings.data_dir / "events"),
        balance_oracle=custody,
    )


def _format_ts(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _print_challenge(challenge: Challenge, phase: str) -> None:
    print(f"\n=== Challenge {challenge.id} ===\n")
    if challenge.metadata and challenge.metadata.title:
        print(f"Title: {challenge.metadata.title}")
    print(f"Creator: {challenge.creator}")
    print(f"Platform: {challenge.platform}")
    print(f"Phase: {phase}")
    status = "finalized" if challenge.finalized else "cancelled" if challenge.cancelled else "active"
    print(f"Status: {status}\n")

    print("Schedule:")
    print(f"  Enrollment ends: {_format_ts(challenge.enroll_end)}")
    print(f"  Competition ends: {_format_ts(challenge.compete_end)}")
    print(f"  Judging ends: {_format_ts(challenge.judge_end)}\n")

    print("Pools:")
    print(f"  Entry Fee: {challenge.entry_fee:,}")
    print(f"  Entry Pool: {challenge.total_entry_pool:,}")
    print(f"  Bet Pool: {challenge.total_bet_pool:,}\n")

    print(f"Agents: {len(challenge.agents)}")
    if challenge.agents:
        for i, agent in enumerate(challenge.agents):
            marker = " (winner)" if challenge.winner_index == i and challenge.finalized else ""
            withdrawn = " [withdrawn]" if agent.withdrawn else ""
            print(
                f"  {i}. {agent.agent_id} owner={agent.owner} votes={agent.vote_count} "
                f"bets={agent.bet_pool:,}{withdrawn}{marker}"
            )
    else:
        print("  (None)")
    print()


def _run_operation(label: str, fn) -> int:
    """Run one escrow call, printing the outcome."""
    try:
        settings = get_settings()
        escrow = _build_escrow(settings)
        result = fn(escrow)
        print(f"\n✓ {label}")
        if result is not None:
            print(result)
        print()
        return 0
    except EscrowError as e:
        print(f"\n❌ {label} rejected [{e.kind.value}]: {e}\n")
        return 1
    except Exception as e:
        logger.error(f"{label} failed: {e}", exc_info=True)
        print(f"\n❌ {label} failed: {e}\n")
        return 1


def cmd_init(args: argparse.Namespace) -> int:
    """Initialize data directory structure and configuration files."""
    data_dir = Path("data").resolve()

    try:
        data_dir.mkdir(exist_ok=True)
        (data_dir / "events").mkdir(parents=True, exist_ok=True)
        logger.info(f"Created data directory: {data_dir}")

        config_path = data_dir / "config.yaml"
        if not config_path.exists():
            config_template = """# Championship Configuration
# Percentage splits, limits, and policies for the escrow.
# Secrets (LOGFIRE_TOKEN, DATABASE_URL) belong in .env, not here.

platform_account: platform

fees:
  entry_winner_pct: 95
  entry_creator_pct: 4
  entry_platform_pct: 1
  bet_winner_pct: 95
  bet_creator_pct: 2
  bet_platform_pct: 3

limits:
  min_entry_fee: 10000000
  min_agents: 3
  max_agents: 64

withdrawal:
  refund_pct: 98
  fee_pct: 2

betting:
  allow_creator_bets: false

voting:
  min_vote_balance: 0

settlement:
  dust_policy: leave
"""
            config_path.write_text(config_template)
            logger.info(f"Created config template: {config_path}")
        else:
            logger.info(f"Config file already exists: {config_path}")

        print(f"\n✓ Data directory initialized at {data_dir}")
        print("\nNext steps:")
        print("1. Review and customize data/config.yaml if needed")
        print("2. Run 'python -m championship config' to verify configuration")
        print("3. Run 'python -m championship create ...' to open a challenge\n")

        return 0

    except Exception as e:
        logger.error(f"Failed to initialize: {e}")
        print(f"\n❌ Initialization failed: {e}\n")
        return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Display merged configuration."""
    try:
        settings = get_settings()

        print("\n=== Championship Configuration ===\n")
        print(f"Data Directory: {settings.data_dir}")
        print(f"Database: {settings.get_database_url()}")
        print(f"Platform Account: {settings.platform_account}\n")

        fees = settings.fees
        print("Entry Pool Split:")
        print(f"  Winner: {fees.entry_winner_pct}%")
        print(f"  Creator: {fees.entry_creator_pct}%")
        print(f"  Platform: {fees.entry_platform_pct}%\n")

        print("Bet Pool Split:")
        print(f"  Winning Bettors: {fees.bet_winner_pct}%")
        print(f"  Creator: {fees.bet_creator_pct}%")
        print(f"  Platform: {fees.bet_platform_pct}%\n")

        print("Limits:")
        print(f"  Min Entry Fee: {settings.limits.min_entry_fee:,}")
        print(f"  Quorum (min agents): {settings.limits.min_agents}")
        print(f"  Max Agents: {settings.limits.max_agents}\n")

        print("Withdrawal:")
        print(f"  Refund: {settings.withdrawal.refund_pct}%")
        print(f"  Fee: {settings.withdrawal.fee_pct}%\n")

        print("Policies:")
        print(f"  Creator Bets Allowed: {settings.betting.allow_creator_bets}")
        print(f"  Min Vote Balance: {settings.voting.min_vote_balance:,}")
        print(f"  Dust Policy: {settings.settlement.dust_policy}\n")

        print("Observability:")
        print(f"  Logfire: {'✓ Set' if settings.logfire_token else '✗ Not set'}\n")

        return 0

    except ValidationError as e:
        print("\n❌ Configuration Error:\n")
        for error in e.errors():
            print(f"  • {'.'.join(str(x) for x in error['loc'])}: {error['msg']}")
        print()
        return 1
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        print(f"\n❌ Failed to load configuration: {e}\n")
        return 1


def cmd_create(args: argparse.Namespace) -> int:
    """Create a challenge."""
    metadata = None
    if args.title or args.description or args.text_file:
        challenge_hash = None
        if args.text_file:
            challenge_hash = hash_challenge_text(Path(args.text_file).read_text(encoding="utf-8"))
        metadata = ChallengeMetadata(
            title=args.title or "",
            description=args.description or "",
            challenge_hash=challenge_hash,
        )

    return _run_operation(
        f"Created challenge {args.challenge_id}",
        lambda escrow: escrow.create(
            args.challenge_id,
            args.entry_fee,
            args.enroll_end,
            args.compete_end,
            args.judge_end,
            caller=args.account,
            metadata=metadata,
        ).id,
    )


def cmd_enroll(args: argparse.Namespace) -> int:
    """Enroll an agent, paying the entry fee."""
    return _run_operation(
        f"Enrolled {args.agent_id} in {args.challenge_id}",
        lambda escrow: escrow.enroll(
            args.challenge_id, args.agent_id, args.account, args.payment
        ).total_entry_pool,
    )


def cmd_bet(args: argparse.Namespace) -> int:
    """Place a bet on an agent."""
    return _run_operation(
        f"Bet {args.amount:,} on {args.agent_id} in {args.challenge_id}",
        lambda escrow: escrow.bet(
            args.challenge_id, args.agent_id, args.account, args.amount
        ).total_bet_pool,
    )


def cmd_vote(args: argparse.Namespace) -> int:
    """Cast a vote for an agent."""

    def vote(escrow: ChampionshipEscrow) -> str:
        challenge = escrow.vote(args.challenge_id, args.agent_id, args.account)
        agent = challenge.agents[challenge.find_agent(args.agent_id)]
        return f"{agent.agent_id} now has {agent.vote_count} votes"

    return _run_operation(f"Voted for {args.agent_id} in {args.challenge_id}", vote)


def cmd_cancel(args: argparse.Namespace) -> int:
    """Cancel a challenge that missed quorum."""

    def cancel(escrow: ChampionshipEscrow) -> str:
        escrow.cancel(args.challenge_id, args.account)
        return "Entry fees and bets are now refundable via claim"

    return _run_operation(f"Cancelled {args.challenge_id}", cancel)


def cmd_finalize(args: argparse.Namespace) -> int:
    """Finalize a challenge after judging."""

    def finalize(escrow: ChampionshipEscrow) -> str:
        challenge = escrow.finalize(args.challenge_id, args.account)
        winner = challenge.winner
        return f"Winner: {winner.agent_id} (owner {winner.owner}, {winner.vote_count} votes)"

    return _run_operation(f"Finalized {args.challenge_id}", finalize)


def cmd_claim(args: argparse.Namespace) -> int:
    """Claim everything owed to an account."""

    def claim(escrow: ChampionshipEscrow) -> str:
        quote = escrow.claim(args.challenge_id, args.account)
        lines = [f"  {c.payout_type}: {c.amount:,}" for c in quote.components]
        return "\n".join(lines + [f"Total: {quote.total:,}"])

    return _run_operation(f"Claimed from {args.challenge_id}", claim)


def cmd_withdraw(args: argparse.Namespace) -> int:
    """Withdraw an agent during the competition window."""
    return _run_operation(
        f"Withdrew {args.agent_id} from {args.challenge_id}",
        lambda escrow: escrow.withdraw(
            args.challenge_id, args.agent_id, args.account
        ).total_entry_pool,
    )


def cmd_sweep_dust(args: argparse.Namespace) -> int:
    """Forward rounding residue to the platform."""
    return _run_operation(
        f"Swept dust from {args.challenge_id}",
        lambda escrow: escrow.sweep_dust(args.challenge_id, args.account),
    )


def cmd_fund(args: argparse.Namespace) -> int:
    """Credit an external wallet, e.g. to seed voters when min_vote_balance is set."""

    def fund(escrow: ChampionshipEscrow) -> str:
        custody = escrow.ctx.custody
        custody.fund(args.account, args.amount)
        return f"Balance: {custody.balance_of(args.account):,}"

    return _run_operation(f"Funded {args.account}", fund)


def cmd_show(args: argparse.Namespace) -> int:
    """Display one challenge, or list all of them."""
    try:
        escrow = _build_escrow(get_settings())

        if args.challenge_id:
            challenge = escrow.get_challenge(args.challenge_id)
            _print_challenge(challenge, escrow.get_phase(args.challenge_id).value)
            return 0

        challenges = escrow.list_challenges()
        print(f"\n=== Challenges ({len(challenges)}) ===\n")
        if not challenges:
            print("  (None)")
        for challenge in challenges:
            print(
                f"  • {challenge.id} [{escrow.get_phase(challenge.id).value}] "
                f"agents={len(challenge.agents)} entry_pool={challenge.total_entry_pool:,} "
                f"bet_pool={challenge.total_bet_pool:,}"
            )
        print()
        return 0

    except EscrowError as e:
        print(f"\n❌ {e}\n")
        return 1
    except Exception as e:
        logger.error(f"Failed to read challenges: {e}")
        print(f"\n❌ Failed to read challenges: {e}\n")
        return 1


def cmd_payouts(args: argparse.Namespace) -> int:
    """Display the payout audit trail of a challenge."""
    try:
        escrow = _build_escrow(get_settings())
        payouts = escrow.list_payouts(args.challenge_id)

        print(f"\n=== Payouts for {args.challenge_id} ===\n")
        if not payouts:
            print("  (None)")
        for p in payouts:
            print(
                f"  {p.created_at:%Y-%m-%d %H:%M:%S} {p.payout_type:<20} "
                f"{p.amount:>20,} -> {p.recipient}"
            )
        print()
        return 0

    except Exception as e:
        logger.error(f"Failed to read payouts: {e}")
        print(f"\n❌ Failed to read payouts: {e}\n")
        return 1


def cmd_solvency(args: argparse.Namespace) -> int:
    """Compare a vault's balance to what it still owes."""
    try:
        escrow = _build_escrow(get_settings())
        report = escrow.solvency(args.challenge_id)

        print(f"\n=== Solvency for {args.challenge_id} ===\n")
        print(f"Vault Balance: {report.vault_balance:,}")
        print(f"Outstanding: {report.outstanding:,}")
        print(f"Dust: {report.dust:,}")
        print(f"Solvent: {'✓' if report.is_solvent else '❌'}\n")
        return 0 if report.is_solvent else 1

    except EscrowError as e:
        print(f"\n❌ {e}\n")
        return 1
    except Exception as e:
        logger.error(f"Solvency check failed: {e}")
        print(f"\n❌ Solvency check failed: {e}\n")
        return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP API."""
    try:
        import uvicorn

        from championship.api import create_app

        settings = get_settings()
        escrow = _build_escrow(settings)
        app = create_app(escrow)
        _init_logfire(app=app, engine=escrow.store.engine)

        print("\n=== Championship Escrow API ===\n")
        print(f"Version: {__version__}")
        print(f"Database: {settings.get_database_url()}")
        print(f"Listening on http://{args.host or settings.host}:{args.port or settings.port}\n")

        uvicorn.run(
            app,
            host=args.host or settings.host,
            port=args.port or settings.port,
            log_level=settings.log_level.lower(),
        )
        return 0

    except KeyboardInterrupt:
        print("\n\nReceived interrupt signal. Shutting down...\n")
        return 0
    except Exception as e:
        logger.error(f"Failed to start server: {e}", exc_info=True)
        print(f"\nFailed to start: {e}\n")
        return 1


def _add_challenge_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("challenge_id", help="Challenge ID")


def _add_account_arg(parser: argparse.ArgumentParser, required: bool = True) -> None:
    parser.add_argument(
        "--account",
        required=required,
        default=None,
        help="Calling account",
    )


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Championship: phased entry, wagering, and settlement escrow",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Championship {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    parser_init = subparsers.add_parser(
        "init",
        help="Initialize data directory and configuration files",
    )
    parser_init.set_defaults(func=cmd_init)

    parser_config = subparsers.add_parser(
        "config",
        help="Display merged configuration",
    )
    parser_config.set_defaults(func=cmd_config)

    parser_create = subparsers.add_parser("create", help="Create a challenge")
    _add_challenge_arg(parser_create)
    _add_account_arg(parser_create)
    parser_create.add_argument("--entry-fee", type=int, required=True, help="Entry fee")
    parser_create.add_argument(
        "--enroll-end", type=int, required=True, help="Enrollment end (unix seconds)"
    )
    parser_create.add_argument(
        "--compete-end", type=int, required=True, help="Competition end (unix seconds)"
    )
    parser_create.add_argument(
        "--judge-end", type=int, required=True, help="Judging end (unix seconds)"
    )
    parser_create.add_argument("--title", help="Challenge title")
    parser_create.add_argument("--description", help="Challenge description")
    parser_create.add_argument(
        "--text-file",
        help="File holding the full challenge text; its SHA-256 is committed",
    )
    parser_create.set_defaults(func=cmd_create)

    parser_enroll = subparsers.add_parser("enroll", help="Enroll an agent")
    _add_challenge_arg(parser_enroll)
    _add_account_arg(parser_enroll)
    parser_enroll.add_argument("--agent-id", required=True, help="Agent ID")
    parser_enroll.add_argument("--payment", type=int, required=True, help="Attached payment")
    parser_enroll.set_defaults(func=cmd_enroll)

    parser_bet = subparsers.add_parser("bet", help="Bet on an agent")
    _add_challenge_arg(parser_bet)
    _add_account_arg(parser_bet)
    parser_bet.add_argument("--agent-id", required=True, help="Agent ID")
    parser_bet.add_argument("--amount", type=int, required=True, help="Bet amount")
    parser_bet.set_defaults(func=cmd_bet)

    parser_vote = subparsers.add_parser("vote", help="Vote for an agent")
    _add_challenge_arg(parser_vote)
    _add_account_arg(parser_vote)
    parser_vote.add_argument("--agent-id", required=True, help="Agent ID")
    parser_vote.set_defaults(func=cmd_vote)

    parser_cancel = subparsers.add_parser("cancel", help="Cancel a challenge below quorum")
    _add_challenge_arg(parser_cancel)
    _add_account_arg(parser_cancel, required=False)
    parser_cancel.set_defaults(func=cmd_cancel)

    parser_finalize = subparsers.add_parser("finalize", help="Finalize a judged challenge")
    _add_challenge_arg(parser_finalize)
    _add_account_arg(parser_finalize, required=False)
    parser_finalize.set_defaults(func=cmd_finalize)

    parser_claim = subparsers.add_parser("claim", help="Claim payouts for an account")
    _add_challenge_arg(parser_claim)
    _add_account_arg(parser_claim)
    parser_claim.set_defaults(func=cmd_claim)

    parser_withdraw = subparsers.add_parser("withdraw", help="Withdraw an agent")
    _add_challenge_arg(parser_withdraw)
    _add_account_arg(parser_withdraw)
    parser_withdraw.add_argument("--agent-id", required=True, help="Agent ID")
    parser_withdraw.set_defaults(func=cmd_withdraw)

    parser_fund = subparsers.add_parser("fund", help="Credit an external wallet")
    _add_account_arg(parser_fund)
    parser_fund.add_argument("--amount", type=int, required=True, help="Amount to credit")
    parser_fund.set_defaults(func=cmd_fund)

    parser_show = subparsers.add_parser("show", help="Display challenges")
    parser_show.add_argument("challenge_id", nargs="?", help="Challenge ID (omit to list all)")
    parser_show.set_defaults(func=cmd_show)

    parser_payouts = subparsers.add_parser("payouts", help="Display the payout audit trail")
    _add_challenge_arg(parser_payouts)
    parser_payouts.set_defaults(func=cmd_payouts)

    parser_solvency = subparsers.add_parser("solvency", help="Check vault solvency")
    _add_challenge_arg(parser_solvency)
    parser_solvency.set_defaults(func=cmd_solvency)

    parser_sweep = subparsers.add_parser(
        "sweep-dust",
        help="Forward rounding residue to the platform (dust_policy=sweep_to_platform)",
    )
    _add_challenge_arg(parser_sweep)
    _add_account_arg(parser_sweep)
    parser_sweep.set_defaults(func=cmd_sweep_dust)

    parser_serve = subparsers.add_parser("serve", help="Run the HTTP API")
    parser_serve.add_argument("--host", default=None, help="Bind address")
    parser_serve.add_argument("--port", type=int, default=None, help="Bind port")
    parser_serve.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)

    try:
        setup_logging(get_settings())
    except Exception:
        # cmd_config reports the invalid settings
        setup_logging()

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
