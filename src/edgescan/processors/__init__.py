"""Processors that derive shared data from sources."""
