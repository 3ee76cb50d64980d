"""Reason/act orchestration: context shaping, adapters and the agent graph."""
