"""opencode-synced: keep OpenCode configuration in sync through a git mirror."""

__version__ = "0.4.0"
