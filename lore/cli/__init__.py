"""lore command-line interface."""
