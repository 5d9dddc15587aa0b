from duet.tools.config import RelayConfig
from quart import Quart
from . import SessionDirectory, init


def create_app(config: RelayConfig = None) -> Quart:
    """Build the relay application with its own session directory."""
    config = config or RelayConfig()
    app = Quart("duet.relay")
    directory = SessionDirectory(forming_timeout=config.forming_timeout)
    app.extensions["session_directory"] = directory
    init(app, directory, config.path)
    return app
