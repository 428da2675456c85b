"""Domain models for tracker-batch."""
