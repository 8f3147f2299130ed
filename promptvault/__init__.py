"""Snapshot, backup and restore core for the PromptVault desktop app."""
