"""
Import players and teams into the ledger from CSV files.

Players CSV columns: name, year, position, base_price, played_last_year
Teams CSV columns:   name, budget, slots

Header spelling is forgiving (case, spaces, a few common aliases). Position
labels are fuzzy-matched onto the fixed position list; rows that still cannot
be placed are skipped with a warning rather than failing the whole import.
"""

import logging
import pandas as pd
from pathlib import Path
from typing import List, Optional
from fuzzywuzzy import fuzz, process

from . import config
from .auction.auction_records import Player, Team
from .auction.ledger_store import LedgerStore

logger = logging.getLogger(__name__)

# Normalized header -> canonical column
COLUMN_ALIASES = {
    'player': 'name',
    'player_name': 'name',
    'team': 'name',
    'team_name': 'name',
    'pos': 'position',
    'baseprice': 'base_price',
    'price': 'base_price',
    'playedlastyear': 'played_last_year',
    'played': 'played_last_year',
    'slots_left': 'slots',
    'roster_slots': 'slots',
}

# Labels too far from the canonical name for fuzzy matching to catch
POSITION_ALIASES = {
    'goalkeeper': 'GK',
    'keeper': 'GK',
    'goalie': 'GK',
    'defence': 'Defender',
    'defense': 'Defender',
    'forward': 'Striker',
    'attacker': 'Striker',
    'women': 'Girls',
}

TRUTHY = {'1', 'true', 't', 'yes', 'y', 'x'}


def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Lower-case, snake_case and de-alias the CSV headers."""
    renamed = {}
    for column in df.columns:
        key = str(column).strip().lower().replace(' ', '_').replace('-', '_')
        renamed[column] = COLUMN_ALIASES.get(key, key)
    return df.rename(columns=renamed)


def match_position(label) -> Optional[str]:
    """
    Map a free-text position label onto config.PLAYER_POSITIONS.

    Args:
        label: Position as written in the CSV

    Returns:
        Canonical position, or None if nothing scores above the threshold
    """
    if label is None or pd.isna(label):
        return None

    text = str(label).strip()
    if not text:
        return None
    if text in config.PLAYER_POSITIONS:
        return text
    if text.lower() in POSITION_ALIASES:
        return POSITION_ALIASES[text.lower()]

    match_result = process.extractOne(
        text,
        config.PLAYER_POSITIONS,
        scorer=fuzz.token_sort_ratio
    )
    if match_result is None:
        return None

    matched, score = match_result[0], match_result[1]
    if score < config.POSITION_MATCH_THRESHOLD:
        logger.warning(f"Low confidence position match '{text}' → '{matched}' ({score}%)")
        return None

    logger.debug(f"Matched position '{text}' → '{matched}' ({score}%)")
    return matched


def parse_flag(value) -> bool:
    if value is None or pd.isna(value):
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUTHY


def read_players(csv_path: Path, first_id: int = 1) -> List[Player]:
    """
    Read player rows from CSV.

    Args:
        csv_path: Path to the players CSV
        first_id: Numeric id given to the first accepted row

    Returns:
        List of unsold Player records with consecutive ids

    Raises:
        FileNotFoundError: If the CSV does not exist
        ValueError: If a required column is missing
    """
    csv_path = Path(csv_path)
    if not csv_path.exists():
        raise FileNotFoundError(f"Player file not found: {csv_path}")

    df = normalize_columns(pd.read_csv(csv_path))

    missing = [col for col in ('name', 'year', 'position') if col not in df.columns]
    if missing:
        raise ValueError(f"Player file must have columns: {', '.join(missing)}")

    df['year'] = pd.to_numeric(df['year'], errors='coerce')
    if 'base_price' in df.columns:
        df['base_price'] = pd.to_numeric(df['base_price'], errors='coerce')
    else:
        df['base_price'] = config.DEFAULT_BASE_PRICE
    if 'played_last_year' not in df.columns:
        df['played_last_year'] = False

    players = []
    skipped = 0
    for row_number, row in enumerate(df.itertuples(index=False), start=2):
        name = '' if pd.isna(row.name) else str(row.name).strip()
        if not name or pd.isna(row.year) or row.year <= 0:
            logger.warning(f"Row {row_number}: missing name or year, skipped")
            skipped += 1
            continue

        position = match_position(row.position)
        if position is None:
            logger.warning(f"Row {row_number}: unknown position {row.position!r} for {name}, skipped")
            skipped += 1
            continue

        base_price = config.DEFAULT_BASE_PRICE if pd.isna(row.base_price) else int(row.base_price)
        if base_price < 0:
            logger.warning(f"Row {row_number}: negative base price for {name}, using default")
            base_price = config.DEFAULT_BASE_PRICE

        players.append(Player(
            player_id=str(first_id + len(players)),
            name=name,
            year=int(row.year),
            position=position,
            base_price=base_price,
            played_last_year=parse_flag(row.played_last_year)
        ))

    logger.info(f"Read {len(players)} players from {csv_path} ({skipped} skipped)")
    return players


def read_teams(csv_path: Path, first_id: int = 1) -> List[Team]:
    """
    Read team rows from CSV.

    Missing budget or slots fall back to DEFAULT_TEAM_BUDGET / DEFAULT_TEAM_SLOTS.

    Raises:
        FileNotFoundError: If the CSV does not exist
        ValueError: If the name column is missing
    """
    csv_path = Path(csv_path)
    if not csv_path.exists():
        raise FileNotFoundError(f"Team file not found: {csv_path}")

    df = normalize_columns(pd.read_csv(csv_path))
    if 'name' not in df.columns:
        raise ValueError("Team file must have a 'name' column")

    for column, default in (('budget', config.DEFAULT_TEAM_BUDGET), ('slots', config.DEFAULT_TEAM_SLOTS)):
        if column in df.columns:
            df[column] = pd.to_numeric(df[column], errors='coerce').fillna(default)
        else:
            df[column] = default

    teams = []
    for row_number, row in enumerate(df.itertuples(index=False), start=2):
        name = '' if pd.isna(row.name) else str(row.name).strip()
        if not name:
            logger.warning(f"Row {row_number}: missing team name, skipped")
            continue
        if row.budget < 0 or row.slots < 0:
            logger.warning(f"Row {row_number}: negative budget or slots for {name}, skipped")
            continue

        teams.append(Team(
            team_id=str(first_id + len(teams)),
            name=name,
            budget=int(row.budget),
            slots_left=int(row.slots)
        ))

    logger.info(f"Read {len(teams)} teams from {csv_path}")
    return teams


def import_players(ledger: LedgerStore, csv_path: Path) -> int:
    """
    Append the players in a CSV to the ledger.

    Returns:
        Number of players added
    """
    players = read_players(csv_path, first_id=int(ledger.next_player_id()))
    if players:
        ledger.add_players(players)
    return len(players)


def import_teams(ledger: LedgerStore, csv_path: Path) -> int:
    """
    Append the teams in a CSV to the ledger.

    Returns:
        Number of teams added
    """
    teams = read_teams(csv_path, first_id=int(ledger.next_team_id()))
    if teams:
        ledger.add_teams(teams)
    return len(teams)
