"""nobl9-sync command-line interface."""
