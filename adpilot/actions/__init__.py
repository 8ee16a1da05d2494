"""Actions — the approval queue and its execution machinery.

An Action is the only write-intent object in adpilot. It moves through
pending -> approved -> executed/failed, with rejected and expired as
the human and timeout exits.
"""
