"""Learning loop — reflection on executed actions and skill evolution."""
