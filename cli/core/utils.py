import re
import typer

def validate_password(password: str) -> bool:
    """
    Same policy the server enforces at registration:
    at least 8 characters with a letter, a number and a special character.
    """
    if len(password) < 8:
        typer.echo("Password must be at least 8 characters long.")
        return False

    if not re.search(r"[a-zA-Z]", password):
        typer.echo("Password must contain at least one letter.")
        return False

    if not re.search(r"\d", password):
        typer.echo("Password must contain at least one number.")
        return False

    if not re.search(r"[^A-Za-z0-9]", password):
        typer.echo("Password must contain at least one special character.")
        return False

    return True


def parse_identifiers(pairs: list[str]) -> dict[str, str]:
    """
    Turns ``key=value`` options into a dict. Raises typer.BadParameter on bad input.
    """
    identifiers = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected key=value, got '{pair}'")
        identifiers[key.strip()] = value.strip()
    return identifiers
