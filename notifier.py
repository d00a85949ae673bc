import os
import time
from typing import Iterable, List, Optional, Sequence, Set

import requests

from trackers.logs import log_line
from trackers.models import CacheEntry
from trackers.view import TrackerView

ZONES = ("zone1", "zone2")


class TelegramClient:
    """Bot API sendMessage to one chat; plain text, no link previews."""

    def __init__(self, bot_token: str, chat_id: str, timeout: float = 20.0) -> None:
        self.bot_token = (bot_token or "").strip()
        self.chat_id = str(chat_id or "").strip()
        self.timeout = float(timeout)

    @property
    def url(self) -> str:
        return f"https://api.telegram.org/bot{self.bot_token}/sendMessage"

    def send(self, text: str) -> bool:
        if not self.bot_token or not self.chat_id:
            return False
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        for attempt in range(2):
            try:
                r = requests.post(self.url, json=payload, timeout=self.timeout)
            except requests.RequestException as e:
                if attempt == 1:
                    log_line(f"[notify] telegram failed: {e}")
                    return False
                time.sleep(0.8)
                continue
            if r.ok:
                return True
            # only 429 is retried, after the server-given retry_after
            if r.status_code != 429 or attempt == 1:
                log_line(f"[notify] telegram http {r.status_code}")
                return False
            time.sleep(_retry_after(r))
        return False


def _retry_after(response, cap: float = 5.0) -> float:
    try:
        body = response.json()
        wait = float(body.get("parameters", {}).get("retry_after", 1))
    except (ValueError, AttributeError, TypeError):
        wait = 1.0
    return max(0.0, min(wait, cap))


class WebhookClient:
    """Group-bot webhook taking {"msgtype": "text"} payloads; errcode 0 means delivered."""

    def __init__(self, url: str, mention_all: bool = False) -> None:
        self.url = (url or "").strip()
        self.mention_all = bool(mention_all)

    def send(self, text: str) -> bool:
        if not self.url:
            return False
        payload = {
            "msgtype": "text",
            "text": {
                "content": text,
                "mentioned_list": ["@all"] if self.mention_all else [],
            },
        }
        for attempt in range(2):
            try:
                r = requests.post(self.url, json=payload, timeout=10)
                if not r.ok:
                    log_line(f"[notify] webhook http {r.status_code}")
                    return False
                try:
                    body = r.json()
                except ValueError:
                    return True
                errcode = body.get("errcode") if isinstance(body, dict) else None
                if errcode not in (None, 0):
                    log_line(f"[notify] webhook errcode={errcode} errmsg={body.get('errmsg')}")
                    return False
                return True
            except requests.RequestException as e:
                if attempt == 1:
                    log_line(f"[notify] webhook failed: {e}")
                    return False
                time.sleep(0.8)
        return False


def format_zone_message(instance_id: str, zone: str, entries: Sequence[CacheEntry], now: Optional[float] = None) -> str:
    now = time.time() if now is None else now
    stamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(now))
    lines = [f"[{instance_id}] {zone} new entries ({len(entries)}) {stamp}"]
    for e in entries:
        held_h = max(0.0, now - e.entry_time) / 3600.0
        lines.append(
            f"{e.symbol} pullback={e.pullback_pct:.2f}% "
            f"gain={e.gain_from_entry_pct():.2f}% "
            f"peak={e.peak_metric:g} last={e.current_metric:g} held={held_h:.1f}h"
        )
    return "\n".join(lines)


class ZoneNotifier:
    """View subscriber that announces symbols newly entering a zone.

    The first view it sees only seeds the baseline, so a restart does not
    re-announce entries that were already in the zone.
    """

    def __init__(self, clients: Iterable, zone: str = "zone1", notify_first: bool = False) -> None:
        if zone not in ZONES:
            raise ValueError(f"unknown zone {zone}")
        self.clients = list(clients)
        self.zone = zone
        self._seen: Optional[Set[str]] = None if not notify_first else set()
        self.sent: List[str] = []

    def __call__(self, view: TrackerView) -> None:
        entries = list(getattr(view, self.zone))
        current = {e.symbol for e in entries}
        previous = self._seen
        self._seen = current
        if previous is None:
            return
        fresh = [e for e in entries if e.symbol not in previous]
        if not fresh:
            return
        text = format_zone_message(view.instance_id, self.zone, fresh, view.last_scan_ts)
        for client in self.clients:
            try:
                ok = client.send(text)
            except Exception as e:
                log_line(f"[notify] {type(client).__name__} error: {e}")
                continue
            if not ok:
                log_line(f"[notify] {type(client).__name__} not delivered")
        self.sent.append(text)
        log_line(f"[notify] {view.instance_id} {self.zone} +{','.join(e.symbol for e in fresh)}")


def clients_from_env() -> list:
    clients: list = []
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    chat_id = os.getenv("TELEGRAM_CHAT_ID", "")
    if token and chat_id:
        clients.append(TelegramClient(token, chat_id))
    webhook = os.getenv("TRACKER_WEBHOOK_URL", "")
    if webhook:
        mention = str(os.getenv("TRACKER_WEBHOOK_MENTION_ALL", "")).strip().lower() in ("1", "true", "yes", "y", "on")
        clients.append(WebhookClient(webhook, mention_all=mention))
    return clients
