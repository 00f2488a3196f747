"""SpikeWatch — application entry point.

Boots the FastAPI internal server and runs the live monitor alongside it.
"""

import logging
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse

from spikewatch.api.routers import router

app = FastAPI(title="SpikeWatch Internal API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Content-Type"],
)
app.include_router(router)

logger = logging.getLogger("spikewatch")

_LIVE_HTML = """<!doctype html>
<html lang="en"><meta charset="utf-8"/><title>SpikeWatch Live</title>
<meta name="viewport" content="width=device-width,initial-scale=1"/>
<style>
body{margin:0;background:#0b0f1a;color:#dbe2ff;font:14px system-ui,sans-serif}
header{padding:12px 16px;border-bottom:1px solid #19203a;display:flex;gap:10px}
main{max-width:1100px;margin:0 auto;padding:12px}
.row{display:flex;gap:16px;padding:8px;border-bottom:1px solid #131b3a}
.sym{width:160px;font-weight:600}.up{color:#20d080}.down{color:#ff6b6b}
.time{margin-left:auto;color:#9fb7ff;font-size:12px}
</style>
<header><b>SpikeWatch</b><a href="/alerts" style="color:#9fb7ff">/alerts</a></header>
<main id="list"><small>Waiting for stream…</small></main>
<script>
const list = document.getElementById('list');
const fmt = (x) => x == null ? '—' : Number(x).toFixed(3) + '%';
function row(a) {
  const div = document.createElement('div'); div.className = 'row';
  const up = ['UP', 'long'].includes(a.direction);
  const moves = a.is_update
    ? '1m ' + fmt(a.move_1m) + ' • 5m ' + fmt(a.move_5m) + ' • 15m ' + fmt(a.move_15m)
    : (a.kind || '') + ' ' + fmt(a.move_pct);
  div.innerHTML = '<div class="sym">' + a.symbol + '</div>' +
    '<div class="' + (up ? 'up' : 'down') + '">' + a.direction + '</div>' +
    '<div>' + moves + '</div>' +
    '<div class="time">' + new Date(a.t).toLocaleTimeString() + '</div>';
  return div;
}
fetch('/alerts?limit=100').then(r => r.json()).then(arr => {
  list.innerHTML = ''; arr.forEach(a => list.appendChild(row(a)));
});
const es = new EventSource('/stream');
es.onmessage = (ev) => {
  try { list.prepend(row(JSON.parse(ev.data)));
        if (list.children.length > 600) list.lastChild.remove(); } catch (e) {}
};
</script>
"""


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


@app.get("/", response_class=HTMLResponse)
@app.get("/live", response_class=HTMLResponse)
async def live_view():
    """Minimal live alert viewer fed by ``/stream``."""
    return HTMLResponse(
        content=_LIVE_HTML,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )


# ── CLI ──────────────────────────────────────────────────────────────────


def build_monitor(config):
    """Wire the catalog client, feed, hub, dispatcher and runner together."""
    from spikewatch.alerts.hub import AlertHub
    from spikewatch.alerts.sinks import TelegramSink, WebhookSink
    from spikewatch.broker.mexc_client import MexcCatalogClient
    from spikewatch.broker.mexc_feed import MexcTickerFeed
    from spikewatch.engine import FeedDispatcher
    from spikewatch.runner import MonitorRunner
    from spikewatch.universe import UniverseBuilder

    hub = AlertHub(
        sinks=[
            WebhookSink(config.webhook_url),
            TelegramSink(config.telegram_bot_token, config.telegram_chat_id),
        ],
        buffer_size=config.alert_buffer_size,
    )
    dispatcher = FeedDispatcher(config, hub=hub)
    builder = UniverseBuilder(MexcCatalogClient(config), config)
    feed = MexcTickerFeed(config.feed_ws_url, ping_interval=config.feed_ping_sec)
    runner = MonitorRunner(config, dispatcher, builder, feed)
    return hub, dispatcher, runner


def _run_cli() -> None:
    """Parse CLI arguments, start the monitor, and map failures to exit codes."""
    import argparse
    import asyncio

    from spikewatch.api.routers import configure_routers
    from spikewatch.config import load_config
    from spikewatch.universe import UniverseGuardrailError

    parser = argparse.ArgumentParser(description="SpikeWatch market monitor")
    parser.add_argument(
        "--engine-only",
        action="store_true",
        help="Run the monitor without the API server",
    )
    parser.add_argument("--port", type=int, help="API port (default: $PORT or 3000)")
    args = parser.parse_args()

    try:
        config = load_config()
    except ValueError as exc:
        logging.basicConfig(level=logging.ERROR)
        logger.error("Invalid configuration: %s", exc)
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    hub, dispatcher, runner = build_monitor(config)
    configure_routers(hub=hub, dispatcher=dispatcher, runner=runner)
    port = args.port or config.port

    try:
        if args.engine_only:
            asyncio.run(_run_engine_only(runner))
        else:
            asyncio.run(_run_with_api(runner, port))
    except UniverseGuardrailError as exc:
        logger.error("Guardrail tripped: %s", exc)
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("Interrupted.")


def _install_signal_handlers(runner) -> None:
    import asyncio
    import signal

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, runner.stop)
        except NotImplementedError:  # pragma: no cover - Windows
            signal.signal(sig, lambda *_: runner.stop())


async def _run_with_api(runner, port: int) -> None:
    """Start the API server and the monitor; when either ends, stop both.

    uvicorn owns SIGINT/SIGTERM here: a signal ends the server, which in
    turn stops the monitor.
    """
    import asyncio

    import uvicorn

    server = uvicorn.Server(
        uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
    )
    server_task = asyncio.create_task(server.serve())
    runner_task = asyncio.create_task(runner.run())
    logger.info("Live view available at http://localhost:%d/live", port)

    await asyncio.wait({server_task, runner_task}, return_when=asyncio.FIRST_COMPLETED)
    runner.stop()
    server.should_exit = True
    await asyncio.gather(server_task, return_exceptions=True)
    await runner_task  # re-raises a guardrail failure
    logger.info("SpikeWatch stopped.")


async def _run_engine_only(runner) -> None:
    """Run the monitor without the API server."""
    _install_signal_handlers(runner)
    await runner.run()
    logger.info("SpikeWatch stopped.")


if __name__ == "__main__":
    _run_cli()
