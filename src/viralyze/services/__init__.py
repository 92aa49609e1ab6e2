"""Collaborator implementations and run services."""
