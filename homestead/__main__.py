from homestead.cli import app

app()
