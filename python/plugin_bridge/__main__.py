from .cli import app

app(prog_name="plugin-bridge")
