"""Core collaborators: the model provider layer."""
