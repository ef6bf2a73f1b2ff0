"""Run the watch session server: ``python -m watchparty``."""

import asyncio
import signal

from hypercorn.asyncio import serve
from hypercorn.config import Config as HypercornConfig

from watchparty.server import Config, create_app


async def _serve(config: Config) -> None:
    app = create_app(config)

    hypercorn_config = HypercornConfig()
    hypercorn_config.bind = [f'{config.host}:{config.port}']
    hypercorn_config.accesslog = '-'

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, shutdown_event.set)

    await serve(app, hypercorn_config, shutdown_trigger=shutdown_event.wait)


def main() -> None:
    """Main entry point."""
    config = Config()
    asyncio.run(_serve(config))


if __name__ == '__main__':
    main()
