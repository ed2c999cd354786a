# Copyright (c) 2025 Trae AI. All rights reserved.

import typer
from media_analyzer.cli.main import app as cli_app
from media_analyzer.server.app import Server

app = typer.Typer(help="Media Analyzer - Detect intros and end credits in your video library.")

# Add CLI commands
app.registered_commands.extend(cli_app.registered_commands)

@app.command("server")
def run_server(config_path: str = "config.yaml"):
    """
    Run the analysis server with its scheduler and library watcher.
    """
    server = Server(config_path)
    server.run()

if __name__ == "__main__":
    app()
