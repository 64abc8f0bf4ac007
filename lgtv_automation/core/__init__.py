"""Automation orchestration and runtime wiring."""
