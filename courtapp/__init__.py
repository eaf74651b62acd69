"""Command-line entry points and push notifications for courtbot."""
