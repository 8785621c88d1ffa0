"""toolchat command-line interface."""
