"""Event bus for cycle, action, skill and knowledge notifications."""
