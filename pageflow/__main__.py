from pageflow.cli import app

app()
