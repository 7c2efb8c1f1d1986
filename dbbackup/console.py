"""Status lines printed for the operator while a run is in progress."""

import click


COLORS = {
    'info': 'cyan',
    'success': 'green',
    'warning': 'yellow',
    'error': 'red',
}


def status(message: str, level: str = 'info'):
    """Print a ' > message' line, colored by level (plain when not a tty)."""
    click.secho(f" > {message}", fg=COLORS.get(level))
