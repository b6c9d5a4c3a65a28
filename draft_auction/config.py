"""
Configuration constants for the live draft auction server.
"""

# Auction Defaults
DEFAULT_TIMER_SECONDS = 30        # Countdown per lot, and the anti-snipe reset value
DEFAULT_BID_INCREMENT = 10000     # Minimum step between bids
DEFAULT_BASE_PRICE = 50000        # Used when an imported player has no base price

# Team Defaults
DEFAULT_TEAM_BUDGET = 1000000
DEFAULT_TEAM_SLOTS = 12

# Player positions (closed set)
PLAYER_POSITIONS = ['GK', 'Defender', 'Midfield', 'Striker', 'Girls']

# Minimum fuzzy score (0-100) for mapping a free-text position onto PLAYER_POSITIONS
POSITION_MATCH_THRESHOLD = 70

# ===== COUNTDOWN CONFIGURATION =====

# Seconds between timer ticks. Each tick is scheduled only after the
# previous one (including its ledger write) has completed.
TICK_INTERVAL_SECONDS = 1.0

# ===== STORAGE CONFIGURATION =====

LEDGER_FILE = 'data/ledger/auction_ledger.json'
HISTORY_FILE = 'data/history/settlements.jsonl'
CREDENTIALS_FILE = 'data/credentials.json'
EXPORT_DIR = 'data/output'

# ===== BROADCAST CONFIGURATION =====

# Pending messages per real-time subscriber before it is dropped
SUBSCRIBER_QUEUE_SIZE = 256

# ===== API SERVER CONFIGURATION =====

API_HOST = '127.0.0.1'
API_PORT = 8000
API_BASE_URL = f'http://{API_HOST}:{API_PORT}'
CORS_ORIGINS = ['http://localhost:3000', 'http://localhost:5173']
CLIENT_TIMEOUT_SECONDS = 10

# Logging
LOG_LEVEL = 'INFO'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
