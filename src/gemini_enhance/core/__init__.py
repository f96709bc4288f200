"""Immutable data types and model metadata shared across the pipeline."""
