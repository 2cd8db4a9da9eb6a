"""Autonomous task execution engine."""
