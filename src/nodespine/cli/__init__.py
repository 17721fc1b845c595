"""node-spine command-line interface."""
