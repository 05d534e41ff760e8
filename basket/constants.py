"""Global constants for the basket application."""

# Collection names
USERS = "users"
GROUPS = "groups"
SHOPPING_LISTS = "shoppingLists"
ITEMS = "items"
CHATS = "chats"
MESSAGES = "messages"

# Validation limits
MIN_NAME_LENGTH = 1
MAX_NAME_LENGTH = 100
MAX_MESSAGE_LENGTH = 1000
MAX_ITEM_NAME_LENGTH = 200
MIN_USERNAME_LENGTH = 3
MAX_USERNAME_LENGTH = 20

# Device storage
STORAGE_FILE = "storage.json"
BACKUP_DIR = "backups"
BACKUP_FILE = "shopping_list_backup.json"
SNAPSHOT_VERSION = "1.1"
PENDING_TOGGLES_KEY = "pending_item_toggles"

# Sync timing defaults
BACKUP_MIN_INTERVAL = 10.0
BACKUP_DEBOUNCE = 10.0
OPTIMISTIC_MATCH_WINDOW_MS = 5000
AUTH_TIMEOUT = 10.0

TEMP_ID_PREFIX = "temp-"
