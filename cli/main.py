# cli/main.py


import typer
from cli.auth.commands import app as auth_app
from cli.links.commands import app as links_app

app = typer.Typer()
app.add_typer(auth_app, name="auth")
app.add_typer(links_app, name="links")

if __name__ == "__main__":
    app()
