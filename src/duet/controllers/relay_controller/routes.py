from duet.tools.logger import log_error, log_info
from quart import jsonify, websocket
import asyncio


def register_routes(app, directory, path):
    """
    Register the relay websocket endpoint and the introspection routes.

    Args:
        app: Quart application
        directory: SessionDirectory shared by every connection
        path: URL path of the websocket endpoint (e.g. "/ws")
    """
    from . import ClientConnection

    log_info(f"Registering relay endpoint: {path}")

    @app.websocket(path)
    async def relay_socket():
        ws = websocket._get_current_object()
        connection = ClientConnection(ws)
        writer = asyncio.create_task(connection.run_writer())
        log_info(f"Connection {connection.connection_id} opened")

        try:
            await directory.register(connection)
            while True:
                raw = await ws.receive()
                await directory.route(connection, raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log_error(f"Connection {connection.connection_id} failed: {e}")
        finally:
            await directory.unregister(connection)
            writer.cancel()

    @app.route("/sessions", methods=["GET"])
    async def list_sessions():
        return jsonify({"sessions": directory.list_sessions()})

    @app.route("/health", methods=["GET"])
    async def health():
        return jsonify(
            {
                "status": "ok",
                "sessions": directory.get_session_count(),
                "connections": directory.get_connection_count(),
            }
        )
