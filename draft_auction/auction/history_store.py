"""
Append-only settlement history.

Uses JSONL (JSON Lines) format where each line is a complete JSON object
describing one settlement (sold or unsold) or one admin revert. The ledger
holds the current truth; this log keeps the order in which it came about.
"""

import json
import logging
import pandas as pd
from dataclasses import dataclass, asdict
from datetime import datetime
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

SOLD = 'sold'
UNSOLD = 'unsold'
REVERTED = 'reverted'


@dataclass
class SettlementRecord:
    """One line of the settlement history."""

    sequence: int                 # Running number within the log
    kind: str                     # SOLD, UNSOLD or REVERTED
    player_id: str
    player_name: str
    team_id: Optional[str]
    team_name: Optional[str]
    price: int
    automatic: bool               # Settled by the countdown rather than an admin
    timestamp: datetime

    def to_dict(self) -> dict:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'SettlementRecord':
        return cls(
            sequence=data['sequence'],
            kind=data['kind'],
            player_id=data['player_id'],
            player_name=data['player_name'],
            team_id=data.get('team_id'),
            team_name=data.get('team_name'),
            price=data.get('price', 0),
            automatic=data.get('automatic', False),
            timestamp=datetime.fromisoformat(data['timestamp'])
        )


class SettlementHistory:
    """Append-only log of settlements and reverts."""

    def __init__(self, filepath: Optional[Path] = None):
        """
        Initialize history store.

        Args:
            filepath: Path to JSONL file (None keeps the log in memory only)
        """
        self.filepath = Path(filepath) if filepath else None
        self._memory: List[SettlementRecord] = []
        if self.filepath:
            self.filepath.parent.mkdir(parents=True, exist_ok=True)
        self._sequence = self.get_record_count()

    def append(
        self,
        kind: str,
        player_id: str,
        player_name: str,
        team_id: Optional[str] = None,
        team_name: Optional[str] = None,
        price: int = 0,
        automatic: bool = False
    ) -> SettlementRecord:
        """
        Append a single record to the log.

        Returns:
            The SettlementRecord that was written
        """
        record = SettlementRecord(
            sequence=self._sequence + 1,
            kind=kind,
            player_id=player_id,
            player_name=player_name,
            team_id=team_id,
            team_name=team_name,
            price=price,
            automatic=automatic,
            timestamp=datetime.now()
        )

        if self.filepath is None:
            self._memory.append(record)
        else:
            with open(self.filepath, 'a', encoding='utf-8') as f:
                f.write(json.dumps(record.to_dict()) + '\n')

        self._sequence = record.sequence
        logger.debug(f"History #{record.sequence}: {kind} {player_name} ({price})")
        return record

    def load_all(self) -> List[SettlementRecord]:
        """
        Load the complete history.

        Returns:
            Records in the order they were written (empty if no log yet)
        """
        if self.filepath is None:
            return list(self._memory)

        if not self.filepath.exists():
            return []

        records = []
        with open(self.filepath, 'r', encoding='utf-8') as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue

                try:
                    records.append(SettlementRecord.from_dict(json.loads(line)))
                except (json.JSONDecodeError, KeyError, ValueError) as e:
                    logger.error(
                        f"Failed to parse history at line {line_num}: {e}\n"
                        f"Line content: {line}"
                    )
                    # Continue processing remaining records

        return records

    def get_record_count(self) -> int:
        if self.filepath is None:
            return len(self._memory)
        if not self.filepath.exists():
            return 0
        with open(self.filepath, 'r', encoding='utf-8') as f:
            return sum(1 for line in f if line.strip())

    def to_dataframe(self) -> pd.DataFrame:
        columns = [
            'sequence', 'kind', 'player_id', 'player_name',
            'team_id', 'team_name', 'price', 'automatic', 'timestamp'
        ]
        return pd.DataFrame([r.to_dict() for r in self.load_all()], columns=columns)

    def export_to_csv(self, output_path: Path) -> int:
        """
        Export the history to CSV for post-auction reporting.

        Args:
            output_path: Path for CSV output file

        Returns:
            Number of records exported
        """
        df = self.to_dataframe()
        if df.empty:
            logger.warning("No settlement history to export")
            return 0

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(output_path, index=False)

        logger.info(f"Exported {len(df)} history records to {output_path}")
        return len(df)
