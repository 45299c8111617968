import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from campus_dashboard.app_config import load_json_config, parse_app_config, resolve_runtime_env
from campus_dashboard.bootstrap import bootstrap_runtime
from campus_dashboard.console import PortalConsole
from campus_dashboard.errors import PortalError


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env()

    try:
        runtime = await bootstrap_runtime(app, env)
    except PortalError as ex:
        logger.error(f"Startup failed: {ex}")
        sys.exit(1)

    dashboard = runtime.dashboard
    print(f"campus-dashboard (owner: {dashboard.owner_id}; type 'exit' to quit, '/help' for commands)")
    print(f"Store: {runtime.store.database.path}")
    if runtime.seeded:
        print("Demo data: seeded")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    console = PortalConsole(dashboard)
    console.start()
    try:
        while True:
            try:
                user_input = input("portal> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()

            if trimmed in ("exit", "quit"):
                break

            if not trimmed:
                continue

            try:
                await console.handle(trimmed)
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        console.stop()
        runtime.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
