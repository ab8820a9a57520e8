"""Execution engine, metrics and checks for loadbench-core."""
