"""Delivery of encoded captures to files or standard output."""
