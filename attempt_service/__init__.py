"""Quiz attempt engine: timed attempts, race-free creation and scoring."""
