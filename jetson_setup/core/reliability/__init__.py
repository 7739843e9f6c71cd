"""Reliability — lock waiting, stale-lock reclaim, retrying execution."""
