# Constants.py
# Description: Constants shared by the journal store and the sync engine
#
# Imports
#
# 3rd-Party Imports
#
# Local Imports
#
########################################################################################################################
#
# Functions:

# --- Owned tables ---
TABLE_ACCOUNTS = "accounts"
TABLE_TRADES = "trades"
TABLE_PILL_COLORS = "pill_colors"
TABLE_COPY_GROUPS = "copy_groups"
TABLE_COPY_MEMBERS = "copy_members"
TABLE_DAILY_JOURNALS = "daily_journals"
TABLE_PROFILES = "profiles"

ACCOUNT_TYPES = ("Live", "Evaluation", "Funded", "Demo", "Backtesting")
TRADE_SIDES = ("LONG", "SHORT")
DEFAULT_PILL_COLOR = "primary"

# --- Sync result messages ---
MSG_SYNC_DISABLED = "Cloud sync is disabled"
MSG_NO_USER = "Sign in to sync"
MSG_BUSY = "Sync in progress, please wait..."
MSG_NO_REMOTE_DATA = "No data available to sync"
MSG_UP_TO_DATE = "Your data is already up to date"

# --- Local markers ---
MARKER_PULL_IN_PROGRESS = "pull_in_progress"

# --- Events ---
EVENT_IMPORT_AVAILABLE = "import_available"

# Profile keys carried across devices
PROFILE_FIELDS = ("name", "avatar", "bio", "layout")

#
# End of Constants.py
########################################################################################################################
