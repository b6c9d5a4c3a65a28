"""
Main CLI entry point for the live draft auction server.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from . import config
from .auction.auction_client import AuctionClient, AuctionRequestError
from .auction.errors import AuctionError
from .auction.history_store import SettlementHistory
from .auction.ledger_store import LedgerStore
from .roster_import import import_players, import_teams


def setup_logging(verbose: bool = False):
    """
    Configure logging for the application.

    Args:
        verbose: Enable verbose (DEBUG) logging
    """
    level = logging.DEBUG if verbose else getattr(logging, config.LOG_LEVEL)
    logging.basicConfig(
        level=level,
        format=config.LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def parse_arguments(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='Live Draft Auction Server',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Load the roster, then run the server
  python -m draft_auction.main import-teams teams.csv
  python -m draft_auction.main import-players players.csv
  python -m draft_auction.main serve --port 8000

  # Team spending table
  python -m draft_auction.main summary

  # Export settlement history
  python -m draft_auction.main export-history data/output/history.csv

  # Live state from a running server
  python -m draft_auction.main state --url http://127.0.0.1:8000
        """
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    parser.add_argument(
        '--ledger',
        type=str,
        default=config.LEDGER_FILE,
        help=f'Ledger file (default: {config.LEDGER_FILE})'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    serve = subparsers.add_parser('serve', help='Run the auction server')
    serve.add_argument('--host', type=str, default=config.API_HOST)
    serve.add_argument('--port', type=int, default=config.API_PORT)

    players = subparsers.add_parser('import-players', help='Add players from a CSV file')
    players.add_argument('csv', type=str, help='CSV with name, year, position, base_price, played_last_year')

    teams = subparsers.add_parser('import-teams', help='Add teams from a CSV file')
    teams.add_argument('csv', type=str, help='CSV with name, budget, slots')

    export = subparsers.add_parser('export-history', help='Write settlement history to CSV')
    export.add_argument('output', type=str, help='Output CSV path')
    export.add_argument(
        '--history',
        type=str,
        default=config.HISTORY_FILE,
        help=f'History file (default: {config.HISTORY_FILE})'
    )

    subparsers.add_parser('summary', help='Print team spending summary')

    state = subparsers.add_parser('state', help='Show the live state of a running server')
    state.add_argument('--url', type=str, default=config.API_BASE_URL)
    state.add_argument('--token', type=str, default=None, help='Bearer token (optional)')

    return parser.parse_args(argv)


def run_server(args):
    """Run the API server with uvicorn."""
    import uvicorn

    logger = logging.getLogger(__name__)
    logger.info(f"Starting auction server on {args.host}:{args.port}")
    uvicorn.run(
        "draft_auction.auction.api_server:app",
        host=args.host,
        port=args.port,
        log_level='debug' if args.verbose else 'info'
    )


def run_import(args):
    """Import players or teams into the ledger."""
    logger = logging.getLogger(__name__)
    ledger = LedgerStore(Path(args.ledger))

    if args.command == 'import-players':
        added = import_players(ledger, Path(args.csv))
        logger.info(f"Imported {added} players into {args.ledger}")
    else:
        added = import_teams(ledger, Path(args.csv))
        logger.info(f"Imported {added} teams into {args.ledger}")


def run_export_history(args):
    logger = logging.getLogger(__name__)
    history = SettlementHistory(Path(args.history))
    count = history.export_to_csv(Path(args.output))
    logger.info(f"Exported {count} settlement records to {args.output}")


def run_summary(args):
    """Print the team spending table."""
    ledger = LedgerStore(Path(args.ledger))
    summary = ledger.get_team_summary()

    if summary.empty:
        print("No teams in ledger")
        return

    print("\n" + "="*60)
    print("TEAM SUMMARY")
    print("="*60)
    print(summary.to_string(index=False))
    print("="*60)


def run_state(args):
    """Print the live auction state from a running server."""
    client = AuctionClient(base_url=args.url, token=args.token)
    try:
        state = client.get_state()
    finally:
        client.close()

    print(json.dumps(state, indent=2))


COMMANDS = {
    'serve': run_server,
    'import-players': run_import,
    'import-teams': run_import,
    'export-history': run_export_history,
    'summary': run_summary,
    'state': run_state,
}


def main(argv=None):
    """Main execution function with command branching."""
    args = parse_arguments(argv)

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        COMMANDS[args.command](args)
    except KeyboardInterrupt:
        logger.info("\nInterrupted by user")
    except (AuctionError, AuctionRequestError, FileNotFoundError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Error during {args.command}: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
