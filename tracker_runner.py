import argparse
import threading
import time
from typing import Optional

from env_loader import load_env
from market_data import MarketDataProvider
from notifier import ZoneNotifier, clients_from_env
from state_store import StateStore
from supply_data import SupplyDataProvider
from trackers.config import config_from_env
from trackers.errors import ConfigError
from trackers.hub import TrackerHub
from trackers.registry import get_config_cls, list_selectors
from trackers.view import TrackerView


def _short(symbol: str) -> str:
    return symbol.replace("/USDT:USDT", "")


def format_view(view: TrackerView, now: float, top_n: int = 10) -> str:
    wait = view.seconds_to_next_scan(now)
    wait_txt = f"{wait:.0f}s" if wait is not None else "-"
    c = view.counts()
    lines = [
        f"[{view.instance_id}] {view.selector} status={view.status} scans={view.scan_count} "
        f"next={wait_txt} candidates={c['candidates']} watch={c['watchlist']} "
        f"cache={c['cache']} z1={c['zone1']} z2={c['zone2']} recycle={c['recycle']}"
    ]
    if view.last_error:
        lines.append(f"  last_error: {view.last_error}")
    for label, rows in (("zone2", view.zone2), ("zone1", view.zone1)):
        if not rows:
            continue
        body = " ".join(f"{_short(e.symbol)}({e.pullback_pct:.1f}%)" for e in rows[:top_n])
        lines.append(f"  {label}: {body}")
    if view.candidates:
        body = " ".join(f"{_short(cand.symbol)}({cand.score:.1f})" for cand in view.candidates[:top_n])
        lines.append(f"  top: {body}")
    return "\n".join(lines)


def observe(client, stop: threading.Event, period: float = 1.0) -> None:
    """Print a status line every period; print the full view after each new scan."""
    last_scan = -1
    while not stop.is_set():
        view = client.view()
        now = time.time()
        if view.scan_count != last_scan:
            print(format_view(view, now))
            last_scan = view.scan_count
        else:
            wait = view.seconds_to_next_scan(now)
            print(f"[{view.instance_id}] status={view.status} next={'-' if wait is None else f'{wait:.0f}s'}", end="\r")
        stop.wait(period)


def _start_web(hub: TrackerHub, port: int) -> None:
    from web_app.app import create_app

    app = create_app(hub)
    t = threading.Thread(
        target=lambda: app.run(host="0.0.0.0", port=port, use_reloader=False),
        name="tracker-web",
        daemon=True,
    )
    t.start()


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Candidate tracking runner")
    parser.add_argument("--selector", choices=sorted(list_selectors().keys()), default="gainer")
    parser.add_argument("--id", dest="instance_id", default=None, help="instance id (default: selector name)")
    parser.add_argument("--data-dir", default=None)
    parser.add_argument("--supply-file", default=None)
    parser.add_argument("--notify-zone", choices=["zone1", "zone2", "off"], default="zone1")
    parser.add_argument("--web-port", type=int, default=0, help="serve the JSON api on this port (0: off)")
    args = parser.parse_args(argv)

    load_env()
    instance_id = args.instance_id or args.selector
    store = StateStore(args.data_dir)
    # env overrides apply on top of the saved config
    stored = store.load(instance_id, args.selector).config
    try:
        cfg = config_from_env(get_config_cls(args.selector), base=stored)
        cfg.validate()
    except ConfigError as e:
        print(f"[runner] invalid config: {e}")
        return 2

    hub = TrackerHub(
        provider=MarketDataProvider(),
        store=store,
        supply=SupplyDataProvider(args.supply_file),
    )
    try:
        client = hub.attach(instance_id, args.selector, cfg)
    except ConfigError as e:
        print(f"[runner] invalid config: {e}")
        return 2
    if args.notify_zone != "off":
        clients = clients_from_env()
        if clients:
            client.subscribe(ZoneNotifier(clients, zone=args.notify_zone))
    if args.web_port:
        _start_web(hub, args.web_port)

    stop = threading.Event()
    try:
        observe(client, stop)
    except KeyboardInterrupt:
        print("\n[runner] stopping")
    finally:
        stop.set()
        client.detach()
        hub.shutdown()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
