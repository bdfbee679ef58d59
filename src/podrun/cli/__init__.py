"""podrun CLI -- operator commands built on Typer + Rich."""
