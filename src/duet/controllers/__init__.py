from duet.tools.errors import DuetError
from duet.tools.logger import *
from duet.use_cases.negotiation import Phase
import asyncio
import sys

COMMANDS_HELP = "Commands: start, call, hangup, status, quit"


def run_relay(config):
    """
    Serve the signaling relay until interrupted.
    """
    from .relay_controller.app import create_app

    app = create_app(config)
    log_info(f"Relay listening on {config.host}:{config.port}{config.path}")
    app.run(
        host=config.host,
        port=config.port,
        certfile=config.certfile,
        keyfile=config.keyfile,
    )


async def main_call_task(config):
    """
    Run one negotiation client, driven by commands read from standard input.
    """
    from .call_controller import CallController

    controller = CallController(config)
    await controller.start()

    try:
        if config.auto_call:
            await _run_action(controller.start_media)
        log_info(COMMANDS_HELP)
        await _command_loop(controller)
    finally:
        await controller.stop()


async def _run_action(action):
    try:
        await action()
        return True
    except DuetError as e:
        log_error(f"{action.__name__} failed: {e}")
        return False


async def _command_loop(controller):
    actions = {
        "start": controller.start_media,
        "call": controller.place_call,
        "hangup": controller.hang_up,
    }

    while True:
        line = await asyncio.to_thread(sys.stdin.readline)
        if not line:
            ## Standard input closed: keep any call running until it ends
            if controller.phase not in (Phase.IDLE, Phase.ENDED):
                await controller.wait_for_end()
            return

        command = line.strip().lower()
        if not command:
            continue
        if command in ("quit", "exit"):
            return
        if command == "status":
            log_info(
                f"{controller.role.value}/{controller.phase.value} | "
                f"available: {', '.join(sorted(controller.available_actions()))} | "
                f"{controller.status or '-'}"
            )
        elif command in actions:
            await _run_action(actions[command])
        else:
            log_warning(f"Unknown command '{command}'. {COMMANDS_HELP}")
