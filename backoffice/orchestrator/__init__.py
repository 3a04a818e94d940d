"""Scheduling, processing and retry handling for queued jobs."""
