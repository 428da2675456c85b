"""Batch loading, checkpointing and processing."""
