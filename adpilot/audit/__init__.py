"""Auditor — independent re-checks of screening, decisions and execution."""
