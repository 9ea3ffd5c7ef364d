"""UI configuration constants.

Centralizes magic numbers and configuration values for the UI module.
"""

# Theme (one of Textual's built-in themes)
DEFAULT_THEME = "textual-dark"

# Input history configuration
INPUT_HISTORY_MAX_SIZE = 100  # Maximum entries in input history

# Tab configuration
TAB_TITLE_MAX_LENGTH = 24  # Characters before truncating a tab title

# Chat display configuration
MESSAGE_TIMESTAMP_FORMAT = "%H:%M:%S"

# Notification toasts
NOTIFY_TIMEOUT = 3  # Seconds
ERROR_NOTIFY_TIMEOUT = 6

# Parameter commands typed into the input bar, e.g. "/set temperature 0.7"
COMMAND_PREFIX = "/"
SETTABLE_PARAMETERS = {
    "model": str,
    "temperature": float,
    "top_p": float,
    "max_tokens": int,
    "presence_penalty": float,
    "frequency_penalty": float,
}

# Log panel
LOG_PANEL_MAX_LINES = 1000
LOG_LEVEL_STYLES = {
    "TRACE": "dim white",
    "DEBUG": "dim white",
    "INFO": "cyan",
    "SUCCESS": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold red",
}
