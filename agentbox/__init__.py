"""Coding-agent task orchestration on ephemeral sandboxes."""
