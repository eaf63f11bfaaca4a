"""Capture scheduling, frame assembly, and the end-to-end pipeline."""
