"""Pipeline stages: screen, classify, decide."""
