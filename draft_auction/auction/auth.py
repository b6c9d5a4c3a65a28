"""
Capability check for the request surface.

Maps bearer tokens to a Principal (role + identity). Credentials live in a
JSON file of the form:

    {
        "tokens": {
            "<token>": {"role": "admin", "name": "Auctioneer"},
            "<token>": {"role": "team", "team_id": "3", "name": "Red Lions"}
        }
    }
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from .broadcast import ADMIN, ROLES, SPECTATOR, TEAM

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller."""

    role: str
    team_id: Optional[str] = None
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN

    @property
    def is_team(self) -> bool:
        return self.role == TEAM


ANONYMOUS = Principal(role=SPECTATOR)


class TokenRegistry:
    """Bearer token → Principal lookup."""

    def __init__(self, tokens: Optional[Dict[str, Principal]] = None):
        self._tokens: Dict[str, Principal] = dict(tokens or {})

    def register(self, token: str, principal: Principal) -> None:
        if principal.role not in ROLES:
            raise ValueError(f"Unknown role: {principal.role}")
        if principal.role == TEAM and not principal.team_id:
            raise ValueError("Team credentials need a team_id")
        self._tokens[token] = principal

    def resolve(self, authorization: Optional[str]) -> Optional[Principal]:
        """
        Resolve an Authorization header value.

        Returns:
            Principal for a known "Bearer <token>", otherwise None
        """
        if not authorization or not authorization.startswith('Bearer '):
            return None
        token = authorization.replace('Bearer ', '', 1).strip()
        return self._tokens.get(token)

    def __len__(self) -> int:
        return len(self._tokens)

    @classmethod
    def from_file(cls, filepath: Path) -> 'TokenRegistry':
        """
        Load credentials from JSON.

        Returns an empty registry (only public routes usable) if the file is missing.

        Raises:
            ValueError: If the file is malformed
        """
        registry = cls()
        filepath = Path(filepath)

        if not filepath.exists():
            logger.warning(f"Credentials file not found: {filepath}; admin and team routes disabled")
            return registry

        with open(filepath, 'r', encoding='utf-8') as f:
            data = json.load(f)

        for token, entry in data.get('tokens', {}).items():
            registry.register(token, Principal(
                role=entry['role'],
                team_id=str(entry['team_id']) if entry.get('team_id') is not None else None,
                name=entry.get('name')
            ))

        logger.info(f"Loaded {len(registry)} credentials from {filepath}")
        return registry
