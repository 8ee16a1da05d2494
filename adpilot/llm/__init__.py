"""Reasoning service adapters."""
