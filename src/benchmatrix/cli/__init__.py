"""
CLI Module

Thin command-line adapter over the orchestration engine.
"""
