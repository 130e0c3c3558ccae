"""Terminal client for the chatline protocol."""
