"""Domain models for capture requests, frames, and backend lifecycle."""
