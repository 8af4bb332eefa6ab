"""palaver: an interactive terminal agent for Claude with shell and file tools."""
