"""Trip lifecycle orchestration."""
