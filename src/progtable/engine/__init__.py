"""Evaluation engine: values, registry, computed columns, conditions, rules."""
