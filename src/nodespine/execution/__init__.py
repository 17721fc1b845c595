"""Container execution for the node agent."""
