"""Click subcommands of the depforge CLI."""
