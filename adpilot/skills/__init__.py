"""Skills — the versioned rule and experience memory the pipeline reads."""
